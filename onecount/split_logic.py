# onecount/split_logic.py
import math
import re
from typing import Dict, Iterable, List, Sequence

from .models import BillBreakdown, BillItem, Member, MemberShare


def clean_number_string(num_str: str) -> str:
    """Clean number string by removing non-numeric characters (except .) and spaces."""
    if not isinstance(num_str, str): return ""
    num_str = num_str.replace(" ", "").replace(",", "")
    return re.sub(r'[^\d.]', '', num_str)


def clean_and_convert_number(num_str: str | int | float | None) -> float | None:
    """Clean and convert number string/value to float."""
    if isinstance(num_str, bool): return None
    if isinstance(num_str, (int, float)): return float(num_str)
    if not isinstance(num_str, str): return None
    num_str_stripped = num_str.strip()
    if not num_str_stripped: return None

    # European decimal format only when the comma is the last separator (1.234,56 but not 1,234.56)
    if ',' in num_str_stripped and num_str_stripped.rfind(',') > num_str_stripped.rfind('.'):
        try: # Attempt to interpret comma as decimal if it makes sense
            temp_str = num_str_stripped.replace('.', '').replace(',', '.') # 1.234,56 -> 1234.56
            return float(temp_str)
        except ValueError:
            pass # Fall through to standard cleaning if that fails

    # Standard cleaning (removes all commas, keeps one dot)
    cleaned = clean_number_string(num_str_stripped)
    try: return float(cleaned) if cleaned else None
    except ValueError: return None


def coerce_amount(value: str | int | float | None) -> float:
    """Turn user input into a non-negative amount. Anything unparseable becomes 0."""
    if isinstance(value, str) and value.strip().startswith('-'):
        return 0.0
    amount = clean_and_convert_number(value)
    if amount is None or not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


def format_currency(value: float) -> str:
    return f"{value:.2f}"


def bill_subtotal(items: Iterable[BillItem]) -> float:
    return sum(item.price for item in items)


def raw_member_shares(items: Iterable[BillItem]) -> Dict[str, float]:
    """Equal split of every assigned item among its assignees, keyed by member id."""
    shares: Dict[str, float] = {}
    for item in items:
        assigned_to = item.assigned_members
        if not assigned_to: # Unassigned items stay in the bill subtotal but belong to nobody
            continue
        share = item.price / len(assigned_to)
        for member_id in assigned_to:
            shares[member_id] = shares.get(member_id, 0.0) + share
    return shares


def compute_share(items: Sequence[BillItem], members: Sequence[Member], tip: float) -> BillBreakdown:
    """
    Compute each member's part of a bill.

    The tip is distributed in proportion to each member's share of the full
    subtotal (assigned or not). When the subtotal is zero nobody receives any
    tip. Money on unassigned items, and the tip proportion that follows it,
    only shows up in ``final_total`` and ``unassigned``. Ids on items that do
    not belong to ``members`` are ignored. Values are not rounded.
    """
    subtotal = bill_subtotal(items)
    shares = raw_member_shares(items)

    member_shares: List[MemberShare] = []
    for member in members:
        share = shares.get(member.id, 0.0)
        proportion = share / subtotal if subtotal > 0 else 0.0
        tip_share = tip * proportion
        member_shares.append(MemberShare(
            member_id=member.id,
            name=member.name,
            color=member.color,
            subtotal=share,
            tip_share=tip_share,
            total=share + tip_share,
        ))

    final_total = subtotal + tip
    attributed = sum(m.total for m in member_shares)
    return BillBreakdown(
        subtotal=subtotal,
        tip=tip,
        final_total=final_total,
        unassigned=max(final_total - attributed, 0.0),
        members=member_shares,
    )

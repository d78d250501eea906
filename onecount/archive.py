# onecount/archive.py
from typing import Dict, Sequence

from loguru import logger

from .models import ArchiveSummary, Folder, PersonTotal
from .split_logic import compute_share


def aggregate(folders: Sequence[Folder]) -> ArchiveSummary:
    """
    Grand total and per-person totals across saved folders.

    Each folder is split again with ``compute_share`` over its own frozen
    members, items and tip. People are matched by name because every bill
    carries its own member ids. A person only counts when their share in a
    folder is strictly positive; the color of the last folder processed wins.
    Entries are sorted by amount, descending, and equal amounts keep the order
    in which the name was first met.
    """
    grand_total = 0.0
    person_totals: Dict[str, PersonTotal] = {}

    for folder in folders:
        grand_total += folder.total
        breakdown = compute_share(folder.items, folder.members, folder.tip)

        for share in breakdown.members:
            if share.total <= 0:
                continue
            current = person_totals.get(share.name)
            amount = (current.amount if current else 0.0) + share.total
            person_totals[share.name] = PersonTotal(name=share.name, color=share.color, amount=amount)

    # sorted() is stable, dict order is first-seen order
    per_person = sorted(person_totals.values(), key=lambda p: -p.amount)
    logger.debug(f"Aggregated {len(folders)} folder(s) into {len(per_person)} person total(s).")
    return ArchiveSummary(grand_total=grand_total, per_person=per_person)

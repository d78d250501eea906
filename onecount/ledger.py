# onecount/ledger.py
from datetime import date
from typing import Iterable, List, Optional

from loguru import logger

from . import config
from .archive import aggregate
from .models import (ArchiveSummary, BillBreakdown, BillItem, BillMetadata, BillStatus, Folder, Member,
                     ParsedReceipt)
from .split_logic import bill_subtotal, coerce_amount, compute_share, format_currency


def _today() -> str:
    return date.today().isoformat()


class Ledger:
    """
    In-memory state of one session: the active bill and the archive of folders.

    A bill lives either in the active slot or in ``folders``. ``finalize`` moves
    the active bill into a new folder and ``reopen`` moves a folder back,
    replacing whatever was being edited. Every method applies its whole change
    in one step.
    """

    def __init__(self, initial_members: Optional[Iterable[str]] = None):
        self.members: List[Member] = []
        self.items: List[BillItem] = []
        self.tip: float = 0.0
        self.receipt_image: Optional[str] = None
        self.metadata: Optional[BillMetadata] = None
        self.folders: List[Folder] = [] # newest first
        for name in initial_members or []:
            self.add_member(name)

    # --- State ---
    @property
    def status(self) -> BillStatus:
        if self.items or self.metadata is not None or self.receipt_image is not None:
            return BillStatus.EDITING
        return BillStatus.IDLE

    def _next_bill_name(self) -> str:
        return f"Bill #{len(self.folders) + 1}"

    def _member_ids(self) -> List[str]:
        return [m.id for m in self.members]

    def _known_members(self, member_ids: Iterable[str]) -> List[str]:
        known = set(self._member_ids())
        return [mid for mid in member_ids if mid in known]

    def get_item(self, item_id: str) -> Optional[BillItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        return next((f for f in self.folders if f.id == folder_id), None)

    def _replace_item(self, updated: BillItem) -> BillItem:
        self.items = [updated if item.id == updated.id else item for item in self.items]
        return updated

    # --- Members ---
    def add_member(self, name: str) -> Member:
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValueError("Member name must not be empty.")
        member = Member(name=name, color=config.MEMBER_COLORS[len(self.members) % len(config.MEMBER_COLORS)])
        self.members = [*self.members, member]
        logger.info(f"Added member '{member.name}' ({member.id}).")
        return member

    def remove_member(self, member_id: str) -> bool:
        if member_id not in self._member_ids():
            return False
        members = [m for m in self.members if m.id != member_id]
        items = [
            item.model_copy(update={"assigned_members": [mid for mid in item.assigned_members if mid != member_id]})
            for item in self.items
        ]
        # Both lists are swapped together so no item ever points at a removed member
        self.members, self.items = members, items
        logger.info(f"Removed member {member_id} and cleared their item assignments.")
        return True

    # --- Items ---
    def add_item(self, name: Optional[str] = None, price: str | float | None = 0.0,
                 assigned_members: Optional[Iterable[str]] = None) -> BillItem:
        item = BillItem(
            name=(name or "").strip() or f"Item {len(self.items) + 1}",
            price=coerce_amount(price),
            assigned_members=self._member_ids() if assigned_members is None else self._known_members(assigned_members),
        )
        self.items = [*self.items, item]
        return item

    def update_item(self, item_id: str, name: Optional[str] = None, price: str | float | None = None,
                    assigned_members: Optional[Iterable[str]] = None) -> Optional[BillItem]:
        item = self.get_item(item_id)
        if item is None:
            return None
        changes = {}
        if name is not None:
            position = self.items.index(item) + 1
            changes["name"] = name.strip() or f"Item {position}"
        if price is not None:
            changes["price"] = coerce_amount(price)
        if assigned_members is not None:
            changes["assigned_members"] = list(dict.fromkeys(self._known_members(assigned_members)))
        return self._replace_item(item.model_copy(update=changes))

    def toggle_assignment(self, item_id: str, member_id: str) -> Optional[BillItem]:
        item = self.get_item(item_id)
        if item is None or member_id not in self._member_ids():
            return item
        if member_id in item.assigned_members:
            assigned = [mid for mid in item.assigned_members if mid != member_id]
        else:
            assigned = [*item.assigned_members, member_id]
        return self._replace_item(item.model_copy(update={"assigned_members": assigned}))

    def claim_item(self, item_id: str, member_id: str) -> Optional[BillItem]:
        """Give the whole item to a single member."""
        item = self.get_item(item_id)
        if item is None or member_id not in self._member_ids():
            return item
        return self._replace_item(item.model_copy(update={"assigned_members": [member_id]}))

    def assign_to_everyone(self, item_id: str) -> Optional[BillItem]:
        item = self.get_item(item_id)
        if item is None:
            return None
        return self._replace_item(item.model_copy(update={"assigned_members": self._member_ids()}))

    def delete_item(self, item_id: str) -> bool:
        remaining = [item for item in self.items if item.id != item_id]
        deleted = len(remaining) != len(self.items)
        self.items = remaining
        return deleted

    def set_tip(self, value: str | float | None) -> float:
        self.tip = coerce_amount(value)
        return self.tip

    def attach_receipt_image(self, image_b64: Optional[str]) -> None:
        self.receipt_image = image_b64

    # --- Receipt ingestion ---
    def ingest_parsed_receipt(self, parsed: ParsedReceipt) -> List[BillItem]:
        """
        Turn an analysis result into bill items.

        Deposit lines ("Pfand") are merged into one item rounded to cents. New
        items are shared by every member present right now, the parsed tip is
        added to the current tip and the bill metadata comes from the merchant
        and date when the receipt names them.
        """
        all_member_ids = self._member_ids()

        if parsed.merchant_name or parsed.date:
            metadata = BillMetadata(name=parsed.merchant_name or "Receipt", date=parsed.date or _today())
        else:
            metadata = BillMetadata(name=self._next_bill_name(), date=_today())

        pfand_items = [i for i in parsed.items if config.PFAND_TOKEN in i.name.lower()]
        other_items = [i for i in parsed.items if config.PFAND_TOKEN not in i.name.lower()]

        new_items = [
            BillItem(name=i.name, price=coerce_amount(i.price), assigned_members=list(all_member_ids))
            for i in other_items
        ]
        if pfand_items:
            # Refund lines are negative and net against the deposits
            total_pfand = sum(i.price for i in pfand_items)
            new_items.append(BillItem(
                name=config.PFAND_SUMMARY_NAME,
                price=round(max(total_pfand, 0.0), 2),
                assigned_members=list(all_member_ids),
            ))

        self.metadata = metadata
        self.items = [*self.items, *new_items]
        if parsed.tip:
            self.tip = self.tip + coerce_amount(parsed.tip)

        logger.info(f"Ingested {len(new_items)} item(s) for '{metadata.name}' "
                    f"({len(pfand_items)} deposit line(s) merged), tip now {format_currency(self.tip)}.")
        return new_items

    # --- Computation ---
    def breakdown(self) -> BillBreakdown:
        return compute_share(self.items, self.members, self.tip)

    def folder_breakdown(self, folder_id: str) -> Optional[BillBreakdown]:
        folder = self.get_folder(folder_id)
        if folder is None:
            return None
        return compute_share(folder.items, folder.members, folder.tip)

    def summary(self) -> ArchiveSummary:
        return aggregate(self.folders)

    # --- Archive moves ---
    def finalize(self) -> Optional[Folder]:
        if not self.items:
            logger.info("Finalize requested on an empty bill, nothing to save.")
            return None

        folder = Folder(
            name=self.metadata.name if self.metadata else self._next_bill_name(),
            date=self.metadata.date if self.metadata else _today(),
            items=[item.model_copy(deep=True) for item in self.items],
            members=[member.model_copy(deep=True) for member in self.members],
            tip=self.tip,
            total=bill_subtotal(self.items) + self.tip,
            receipt_image=self.receipt_image,
        )
        self.folders = [folder, *self.folders]

        # Members stay for the next bill
        self.items = []
        self.tip = 0.0
        self.receipt_image = None
        self.metadata = None
        logger.info(f"Saved '{folder.name}' as folder {folder.id} with total {format_currency(folder.total)}.")
        return folder

    def reopen(self, folder_id: str) -> Optional[Folder]:
        """Move a folder back into the active bill. The folder leaves the archive."""
        folder = self.get_folder(folder_id)
        if folder is None:
            logger.warning(f"Folder {folder_id} not found, nothing to reopen.")
            return None

        self.items = [item.model_copy(deep=True) for item in folder.items]
        self.members = [member.model_copy(deep=True) for member in folder.members]
        self.tip = folder.tip
        self.receipt_image = folder.receipt_image
        self.metadata = BillMetadata(name=folder.name, date=folder.date)
        self.folders = [f for f in self.folders if f.id != folder_id]
        logger.info(f"Reopened folder {folder.id} ('{folder.name}') for editing.")
        return folder

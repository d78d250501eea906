# onecount/api.py
import base64
import io
from typing import Awaitable, Callable, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from PIL import Image as PILImage, UnidentifiedImageError
from pydantic import BaseModel, Field

from . import config, gemini_ocr
from .gemini_ocr import AnalysisError
from .ledger import Ledger
from .models import (ArchiveSummary, BillBreakdown, BillItem, BillMetadata, BillStatus, Folder, Member,
                     ParsedReceipt)

ReceiptAnalyzer = Callable[[bytes], Awaitable[ParsedReceipt]]

# --- FastAPI App Instance ---
app = FastAPI(
    title="onecount",
    description="API for splitting receipts between group members and archiving settled bills.",
    version="1.0.0",
)

# --- CORS Configuration ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide session state, nothing is persisted
ledger_instance = Ledger(initial_members=config.get_initial_member_names())


def get_ledger() -> Ledger:
    return ledger_instance


def get_receipt_analyzer() -> ReceiptAnalyzer:
    return gemini_ocr.analyze_receipt


def compress_image(image_bytes: bytes, target_size_bytes: int = config.MAX_IMAGE_SIZE_BYTES,
                   quality: int = 90, min_quality: int = 70) -> bytes:
    """Re-encode the upload as JPEG, lowering quality and then size until it fits."""
    try:
        img = PILImage.open(io.BytesIO(image_bytes))
        if img.mode not in ('RGB', 'L'): img = img.convert('RGB')
        compressed_bytes = b""
        for q in range(quality, min_quality - 1, -5):
            buffer = io.BytesIO(); img.save(buffer, format="JPEG", quality=q, optimize=True)
            compressed_bytes = buffer.getvalue()
            if len(compressed_bytes) <= target_size_bytes:
                logger.debug(f"Image compressed to {len(compressed_bytes)/1024:.2f} KB with quality {q}.")
                return compressed_bytes
        ratio = (target_size_bytes / len(compressed_bytes))**0.5
        new_width = int(img.width * ratio); new_height = int(img.height * ratio)
        if new_width > 0 and new_height > 0:
            img_resized = img.resize((new_width, new_height), PILImage.Resampling.LANCZOS)
            buffer = io.BytesIO(); img_resized.save(buffer, format="JPEG", quality=min_quality, optimize=True)
            compressed_bytes = buffer.getvalue()
            logger.debug(f"Resized/compressed image size: {len(compressed_bytes)/1024:.2f} KB.")
        return compressed_bytes
    except UnidentifiedImageError: raise HTTPException(status_code=400, detail="Cannot identify image file.")
    except OSError as e: raise HTTPException(status_code=400, detail=f"Image could not be processed: {e}")


def _too_large_detail(size: int) -> str:
    return f"Image too large ({size / (1024*1024):.2f} MB). Max {config.MAX_IMAGE_SIZE_MB:g} MB."


# Pydantic models for request/response bodies
class AddMemberRequest(BaseModel):
    name: str = Field(min_length=1)


class ItemRequest(BaseModel):
    name: Optional[str] = None
    price: float | str | None = None
    assigned_members: Optional[List[str]] = None


class TipRequest(BaseModel):
    tip: float | str | None = None


class ActiveBillView(BaseModel):
    status: BillStatus
    metadata: Optional[BillMetadata] = None
    members: List[Member]
    items: List[BillItem]
    tip: float
    receipt_image: Optional[str] = None
    breakdown: BillBreakdown


class UploadReceiptResponse(BaseModel):
    analyzed: bool
    new_items: List[BillItem] = Field(default_factory=list)
    metadata: Optional[BillMetadata] = None
    tip: float


class ReopenResponse(BaseModel):
    reopened: bool
    bill: ActiveBillView


class RemovalResponse(BaseModel):
    removed: bool


def bill_view(ledger: Ledger) -> ActiveBillView:
    return ActiveBillView(
        status=ledger.status,
        metadata=ledger.metadata,
        members=ledger.members,
        items=ledger.items,
        tip=ledger.tip,
        receipt_image=ledger.receipt_image,
        breakdown=ledger.breakdown(),
    )


def _item_or_404(item: Optional[BillItem], item_id: str) -> BillItem:
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item '{item_id}' not found.")
    return item


# --- API Endpoints ---
@app.get("/")
async def read_root():
    return {"message": "onecount API is running"}


@app.get("/bill", response_model=ActiveBillView)
async def get_bill(ledger: Ledger = Depends(get_ledger)):
    return bill_view(ledger)


@app.post("/members", response_model=Member)
async def add_member(request: AddMemberRequest, ledger: Ledger = Depends(get_ledger)):
    try:
        return ledger.add_member(request.name)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.delete("/members/{member_id}", response_model=RemovalResponse)
async def remove_member(member_id: str, ledger: Ledger = Depends(get_ledger)):
    return RemovalResponse(removed=ledger.remove_member(member_id))


@app.post("/items", response_model=BillItem)
async def add_item(request: ItemRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.add_item(name=request.name, price=request.price, assigned_members=request.assigned_members)


@app.patch("/items/{item_id}", response_model=BillItem)
async def update_item(item_id: str, request: ItemRequest, ledger: Ledger = Depends(get_ledger)):
    updated = ledger.update_item(item_id, name=request.name, price=request.price,
                                 assigned_members=request.assigned_members)
    return _item_or_404(updated, item_id)


@app.delete("/items/{item_id}", response_model=RemovalResponse)
async def delete_item(item_id: str, ledger: Ledger = Depends(get_ledger)):
    return RemovalResponse(removed=ledger.delete_item(item_id))


@app.post("/items/{item_id}/toggle/{member_id}", response_model=BillItem)
async def toggle_assignment(item_id: str, member_id: str, ledger: Ledger = Depends(get_ledger)):
    return _item_or_404(ledger.toggle_assignment(item_id, member_id), item_id)


@app.post("/items/{item_id}/claim/{member_id}", response_model=BillItem)
async def claim_item(item_id: str, member_id: str, ledger: Ledger = Depends(get_ledger)):
    return _item_or_404(ledger.claim_item(item_id, member_id), item_id)


@app.post("/items/{item_id}/assign-all", response_model=BillItem)
async def assign_to_everyone(item_id: str, ledger: Ledger = Depends(get_ledger)):
    return _item_or_404(ledger.assign_to_everyone(item_id), item_id)


@app.put("/tip", response_model=ActiveBillView)
async def set_tip(request: TipRequest, ledger: Ledger = Depends(get_ledger)):
    ledger.set_tip(request.tip)
    return bill_view(ledger)


@app.post("/upload-receipt", response_model=UploadReceiptResponse)
async def upload_receipt(file: UploadFile = File(...), analyze: bool = True,
                         ledger: Ledger = Depends(get_ledger),
                         analyzer: ReceiptAnalyzer = Depends(get_receipt_analyzer)):
    if file.size is not None and file.size > config.MAX_IMAGE_SIZE_BYTES:
        logger.warning(f"Rejected upload of {file.size} bytes.")
        raise HTTPException(status_code=400, detail=_too_large_detail(file.size))

    raw_image_bytes = await file.read()
    if len(raw_image_bytes) > config.MAX_IMAGE_SIZE_BYTES:
        logger.warning(f"Rejected upload of {len(raw_image_bytes)} bytes.")
        raise HTTPException(status_code=400, detail=_too_large_detail(len(raw_image_bytes)))

    processed_image_bytes = compress_image(raw_image_bytes)
    processed_image_b64 = base64.b64encode(processed_image_bytes).decode('utf-8')

    if not analyze:
        ledger.attach_receipt_image(processed_image_b64)
        return UploadReceiptResponse(analyzed=False, metadata=ledger.metadata, tip=ledger.tip)

    try:
        parsed = await analyzer(processed_image_bytes)
    except AnalysisError as e:
        logger.error(f"Receipt analysis failed: {e}")
        raise HTTPException(status_code=502,
                            detail="Failed to analyze receipt. Please try again or enter items manually.")

    # Membership is read now, after the analysis finished
    new_items = ledger.ingest_parsed_receipt(parsed)
    ledger.attach_receipt_image(processed_image_b64)
    return UploadReceiptResponse(analyzed=True, new_items=new_items, metadata=ledger.metadata, tip=ledger.tip)


@app.get("/breakdown", response_model=BillBreakdown)
async def get_breakdown(ledger: Ledger = Depends(get_ledger)):
    return ledger.breakdown()


@app.post("/finalize", response_model=Optional[Folder])
async def finalize_bill(ledger: Ledger = Depends(get_ledger)):
    return ledger.finalize()


@app.get("/folders", response_model=List[Folder])
async def list_folders(ledger: Ledger = Depends(get_ledger)):
    return ledger.folders


@app.get("/folders/{folder_id}", response_model=Folder)
async def get_folder(folder_id: str, ledger: Ledger = Depends(get_ledger)):
    folder = ledger.get_folder(folder_id)
    if folder is None:
        raise HTTPException(status_code=404, detail=f"Folder '{folder_id}' not found.")
    return folder


@app.get("/folders/{folder_id}/breakdown", response_model=BillBreakdown)
async def get_folder_breakdown(folder_id: str, ledger: Ledger = Depends(get_ledger)):
    breakdown = ledger.folder_breakdown(folder_id)
    if breakdown is None:
        raise HTTPException(status_code=404, detail=f"Folder '{folder_id}' not found.")
    return breakdown


@app.post("/folders/{folder_id}/reopen", response_model=ReopenResponse)
async def reopen_folder(folder_id: str, ledger: Ledger = Depends(get_ledger)):
    reopened = ledger.reopen(folder_id) is not None
    return ReopenResponse(reopened=reopened, bill=bill_view(ledger))


@app.get("/summary", response_model=ArchiveSummary)
async def get_summary(ledger: Ledger = Depends(get_ledger)):
    return ledger.summary()

"""
Smart paste API router: parse messages, learn from confirmations.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging

from smartpaste.models.learning import EngineConfig, EngineConfigUpdate, MatchResult
from smartpaste.models.results import BatchImportResult, ParseResult
from smartpaste.models.transaction import ConfirmedTransaction, PositionedToken
from smartpaste.services.engine import SmartPasteEngine
from smartpaste.utils.engine import get_engine

router = APIRouter(prefix="/smart-paste", tags=["smart-paste"])
logger = logging.getLogger(__name__)


class MessageRequest(BaseModel):
    """A raw message plus optional sender hint."""
    text: str
    sender_hint: Optional[str] = None


class ParseResponse(BaseModel):
    """Parse outcome. `result` is null when the message was filtered out."""
    is_financial: bool
    result: Optional[ParseResult] = None


class LearnRequest(BaseModel):
    text: str
    transaction: ConfirmedTransaction
    sender_hint: Optional[str] = None
    field_token_map: Optional[Dict[str, List[str]]] = None


class LearnResponse(BaseModel):
    success: bool
    entry_id: Optional[str] = None
    template_id: Optional[str] = None


class TokensResponse(BaseModel):
    tokens: List[str]
    amount: List[PositionedToken]
    currency: List[PositionedToken]
    vendor: List[PositionedToken]
    account: List[PositionedToken]
    dates: List[str]


class ImportRequest(BaseModel):
    messages: List[str] = Field(..., max_length=500)
    sender_hint: Optional[str] = None


@router.post("/parse", response_model=ParseResponse)
async def parse_message(request: MessageRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """
    Parse a pasted message into a transaction draft.

    Non-financial messages are not an error: the response carries
    `is_financial: false` and no result.
    """
    try:
        result = engine.parse_with_details(request.text, request.sender_hint)
        return ParseResponse(is_financial=result is not None, result=result)

    except Exception as e:
        logger.error("Parse failed", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to parse message: {str(e)}"
        )


@router.post("/learn", response_model=LearnResponse)
async def learn_message(request: LearnRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """Learn from a confirmed transaction, optionally with an explicit token map."""
    try:
        entry = engine.learn(
            request.text,
            request.transaction,
            request.sender_hint,
            request.field_token_map
        )
        if entry is None:
            return LearnResponse(success=False)
        return LearnResponse(success=True, entry_id=entry.id, template_id=entry.template_id)

    except Exception as e:
        logger.error("Learn failed", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to learn from message: {str(e)}"
        )


@router.post("/confirm")
async def confirm_message(request: LearnRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """
    Confirm (and possibly correct) a parsed draft.

    Records template success/fallback and learns when automatic saving is on.
    """
    try:
        engine.confirm(request.text, request.transaction, request.sender_hint)
        return {"success": True}

    except Exception as e:
        logger.error("Confirm failed", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to confirm transaction: {str(e)}"
        )


@router.post("/match", response_model=MatchResult)
async def match_message(request: MessageRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """Best learned entry for a message (confidence is not clamped)."""
    return engine.find_best_match(request.text, request.sender_hint)


@router.post("/infer")
async def infer_fields(request: MessageRequest, engine: SmartPasteEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Heuristic field guesses without learned entries or defaults."""
    return {"fields": engine.infer_fields_from_text(request.text)}


@router.post("/tokens", response_model=TokensResponse)
async def tokenize_message(request: MessageRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """Tokens and per-field token candidates, for debugging rules."""
    return TokensResponse(
        tokens=engine.tokenize(request.text),
        amount=engine.extract_amount_tokens(request.text),
        currency=engine.extract_currency_tokens(request.text),
        vendor=engine.extract_vendor_tokens(request.text),
        account=engine.extract_account_tokens(request.text),
        dates=engine.extract_date_candidates(request.text),
    )


@router.post("/import", response_model=BatchImportResult)
async def import_messages(request: ImportRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """Parse a batch of messages (e.g. an SMS inbox export), one at a time."""
    try:
        return engine.import_messages(request.messages, request.sender_hint)

    except Exception as e:
        logger.error("Batch import failed", extra={
            "count": len(request.messages),
            "error": str(e)
        }, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to import messages: {str(e)}"
        )


@router.get("/config", response_model=EngineConfig)
async def get_config(engine: SmartPasteEngine = Depends(get_engine)):
    return engine.get_config()


@router.put("/config", response_model=EngineConfig)
async def update_config(changes: EngineConfigUpdate, engine: SmartPasteEngine = Depends(get_engine)):
    """Partial update; out-of-range values are rejected with 422."""
    return engine.save_config(changes)

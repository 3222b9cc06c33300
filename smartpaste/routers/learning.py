"""
Learning API router: inspect and manage the learning stores.

Templates, the token map, vendor fallbacks, keyword rules and type keywords are
only ever deleted through these explicit endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import Dict, List, Optional
import logging

from smartpaste.config import settings
from smartpaste.models.learning import (
    FieldMapping,
    ImportedTransaction,
    KeywordMapping,
    LearningResult,
    MasterTokenEntry,
    SmartPasteTemplate,
    TemplateConfidence,
    TemplateStats,
    TypeKeyword,
    VendorFallbackData,
)
from smartpaste.models.transaction import TransactionType
from smartpaste.services.csv_learning import CSV_SOURCE, csv_learned_vendors
from smartpaste.services.engine import SmartPasteEngine
from smartpaste.services.template_bank import compute_template_confidence
from smartpaste.utils.engine import get_engine

router = APIRouter(prefix="/learning", tags=["learning"])
logger = logging.getLogger(__name__)


class TemplateWithConfidence(BaseModel):
    template: SmartPasteTemplate
    confidence: TemplateConfidence


class VendorUpdate(BaseModel):
    type: TransactionType
    category: str
    subcategory: str = ""


class KeywordUpdate(BaseModel):
    mappings: List[FieldMapping]
    sender_context: Optional[str] = None
    transaction_type_context: Optional[str] = None
    type: Optional[str] = None


class TypeKeywordUpdate(BaseModel):
    type: TransactionType


class CsvImportRequest(BaseModel):
    transactions: List[ImportedTransaction]


# Templates

@router.get("/templates", response_model=List[TemplateWithConfidence])
async def list_templates(engine: SmartPasteEngine = Depends(get_engine)):
    """All templates with their confidence, most used first."""
    templates = sorted(engine.templates.all(), key=lambda t: t.meta.usage_count, reverse=True)
    return [
        TemplateWithConfidence(template=t, confidence=compute_template_confidence(t))
        for t in templates
    ]


@router.get("/templates/stats", response_model=TemplateStats)
async def template_stats(
    range_key: str = Query("30d", alias="range", pattern="^(7d|30d|90d)$", description="Reporting window"),
    engine: SmartPasteEngine = Depends(get_engine)
):
    return engine.templates.stats(range_key)


@router.get("/templates/stale", response_model=List[SmartPasteTemplate])
async def stale_templates(
    days: int = Query(settings.STALE_TEMPLATE_DAYS, ge=1, description="Days without use"),
    engine: SmartPasteEngine = Depends(get_engine)
):
    """Templates not used within `days`. They are reported, never deleted."""
    return engine.templates.get_stale_templates(days)


@router.delete("/templates/{template_id}")
async def delete_template(template_id: str, engine: SmartPasteEngine = Depends(get_engine)):
    if not engine.templates.delete(template_id):
        raise HTTPException(status_code=404, detail=f"Template {template_id} not found")
    return {"success": True, "template_id": template_id}


# Token map

@router.get("/master-mind", response_model=Dict[str, MasterTokenEntry])
async def get_master_mind(engine: SmartPasteEngine = Depends(get_engine)):
    return engine.master_mind.get_map()


@router.delete("/master-mind")
async def clear_master_mind(engine: SmartPasteEngine = Depends(get_engine)):
    engine.master_mind.clear()
    return {"success": True}


# Vendor fallbacks

@router.get("/vendors", response_model=Dict[str, VendorFallbackData])
async def list_vendors(
    source: Optional[str] = Query(None, description="Only entries from this source, e.g. csv-import"),
    engine: SmartPasteEngine = Depends(get_engine)
):
    if source == CSV_SOURCE:
        return dict(csv_learned_vendors(engine.vendors))
    vendors = engine.vendors.all()
    if source:
        return {name: data for name, data in vendors.items() if data.source == source}
    return vendors


@router.put("/vendors/{vendor_name}", response_model=VendorFallbackData)
async def set_vendor(vendor_name: str, update: VendorUpdate, engine: SmartPasteEngine = Depends(get_engine)):
    """User edit: the entry becomes user-approved and is frozen for automatic learning."""
    try:
        return engine.vendors.set_user_vendor(vendor_name, update.type, update.category, update.subcategory)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/vendors/{vendor_name}")
async def delete_vendor(vendor_name: str, engine: SmartPasteEngine = Depends(get_engine)):
    if not engine.vendors.delete(vendor_name):
        raise HTTPException(status_code=404, detail=f"Vendor {vendor_name} not found")
    return {"success": True, "vendor": vendor_name}


# Keyword bank

@router.get("/keywords", response_model=List[KeywordMapping])
async def list_keywords(
    search: Optional[str] = Query(None, description="Filter by keyword substring"),
    engine: SmartPasteEngine = Depends(get_engine)
):
    if search:
        return engine.keywords.search(search)
    return engine.keywords.all()


@router.put("/keywords/{keyword}", response_model=KeywordMapping)
async def save_keyword(keyword: str, update: KeywordUpdate, engine: SmartPasteEngine = Depends(get_engine)):
    try:
        return engine.keywords.save_mapping(
            keyword,
            update.mappings,
            sender_context=update.sender_context,
            transaction_type_context=update.transaction_type_context,
            keyword_type=update.type
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/keywords/{keyword}")
async def delete_keyword(keyword: str, engine: SmartPasteEngine = Depends(get_engine)):
    if not engine.keywords.delete(keyword):
        raise HTTPException(status_code=404, detail=f"Keyword {keyword} not found")
    return {"success": True, "keyword": keyword}


# Type keywords

@router.get("/type-keywords", response_model=List[TypeKeyword])
async def list_type_keywords(engine: SmartPasteEngine = Depends(get_engine)):
    return engine.type_keywords.all()


@router.put("/type-keywords/{keyword}", response_model=TypeKeyword)
async def save_type_keyword(keyword: str, update: TypeKeywordUpdate, engine: SmartPasteEngine = Depends(get_engine)):
    """Add or retype a keyword. The stored list also drives the financial-message filter."""
    try:
        return engine.type_keywords.add(keyword, update.type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/type-keywords/{keyword}")
async def delete_type_keyword(keyword: str, engine: SmartPasteEngine = Depends(get_engine)):
    if not engine.type_keywords.remove(keyword):
        raise HTTPException(status_code=404, detail=f"Type keyword {keyword} not found")
    return {"success": True, "keyword": keyword}


# CSV import

@router.post("/csv-import", response_model=LearningResult)
async def csv_import(request: CsvImportRequest, engine: SmartPasteEngine = Depends(get_engine)):
    """Learn vendor classifications from imported transactions."""
    try:
        return engine.batch_learn(request.transactions)

    except Exception as e:
        logger.error("CSV learning failed", extra={
            "count": len(request.transactions),
            "error": str(e)
        }, exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to learn from import: {str(e)}"
        )

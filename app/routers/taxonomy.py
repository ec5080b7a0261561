"""Taxonomy API router.

Endpoints:
- GET /taxonomy -- configured keyword phrases per issue category
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.dependencies import get_taxonomy
from app.models.validation import TaxonomyResponse
from app.services.taxonomy import KeywordTaxonomy

router = APIRouter(prefix="/taxonomy", tags=["taxonomy"])


@router.get("", response_model=TaxonomyResponse)
def get_taxonomy_keywords(
    taxonomy: KeywordTaxonomy = Depends(get_taxonomy),
) -> TaxonomyResponse:
    return TaxonomyResponse(keywords=taxonomy.as_dict())

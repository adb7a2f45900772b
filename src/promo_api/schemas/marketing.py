from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

# meta: schema: campaign-rules


class DiscountTier(BaseModel):
    """Spend threshold and the flat discount it unlocks."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    min_amount: Decimal = Field(..., ge=0, alias="minAmount", validation_alias=AliasChoices("min_amount", "minAmount"))
    discount_amount: Decimal = Field(
        ...,
        ge=0,
        alias="discountAmount",
        validation_alias=AliasChoices("discount_amount", "discountAmount", "discount"),
    )


class TieredDiscountRules(BaseModel):
    """Rule document stored on tiered-discount campaigns.

    Older documents keep their tiers under ``rules``; unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    tiers: list[DiscountTier] = Field(default_factory=list, validation_alias=AliasChoices("tiers", "rules"))


_TIER_LIST = TypeAdapter(list[DiscountTier])


def parse_tiered_rules(raw: Any) -> TieredDiscountRules:
    """Validate a stored rules blob into typed tiers.

    Accepts ``{"tiers": [...]}`` as well as a bare list of tiers. Raises
    ``pydantic.ValidationError`` on malformed documents.
    """

    if raw is None:
        return TieredDiscountRules()
    if isinstance(raw, list):
        return TieredDiscountRules(tiers=_TIER_LIST.validate_python(raw))
    return TieredDiscountRules.model_validate(raw)


__all__ = ["DiscountTier", "TieredDiscountRules", "ValidationError", "parse_tiered_rules"]

"""API endpoints for coupons, claimed coupons and campaigns."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.api.dependencies.security import require_checkout_api_key
from promo_api.api.dependencies.session import optional_member_id, require_member_session
from promo_api.db.session import get_session
from promo_api.models.marketing import Coupon, CampaignType, CouponScope, UserCouponStatus
from promo_api.models.user import User
from promo_api.services.marketing import (
    CampaignService,
    CampaignView,
    CouponAvailability,
    CouponService,
    UserCouponService,
    UserCouponView,
)
from promo_api.services.marketing.errors import (
    ConflictError,
    NotFoundError,
    PromotionError,
    RuleViolationError,
)
from promo_api.services.marketing.pagination import page_bounds


router = APIRouter(prefix="/marketing", tags=["marketing"])


class CouponResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    discountType: str
    value: float
    minAmount: float
    maxDiscount: Optional[float]
    applicableScope: str
    totalCount: int
    receivedCount: int
    usedCount: int
    perUserLimit: int
    startTime: datetime
    endTime: datetime
    validDays: Optional[int]
    status: str


class CouponAvailabilityResponse(BaseModel):
    coupon: CouponResponse
    receivedByUser: int
    remainCount: int
    canReceive: bool
    reason: Optional[str]


class CouponPageResponse(BaseModel):
    items: List[CouponAvailabilityResponse]
    total: int
    page: int
    pageSize: int


class UserCouponResponse(BaseModel):
    id: UUID
    couponId: UUID
    status: str
    displayStatus: str
    isAvailable: bool
    daysRemaining: int
    orderId: Optional[str]
    claimedAt: datetime
    expiresAt: datetime
    usedAt: Optional[datetime]
    discount: Optional[float] = None
    coupon: Optional[CouponResponse] = None


class UserCouponPageResponse(BaseModel):
    items: List[UserCouponResponse]
    total: int
    page: int
    pageSize: int


class BestCouponResponse(BaseModel):
    userCoupon: Optional[UserCouponResponse]
    discount: float


class UserCouponCountResponse(BaseModel):
    unused: int
    used: int
    expired: int


class UseCouponRequest(BaseModel):
    orderId: str = Field(..., min_length=1, max_length=64, description="Order the coupon is redeemed against")
    orderAmount: Decimal = Field(..., ge=0, description="Order amount before discount")


class UseCouponResponse(BaseModel):
    userCoupon: UserCouponResponse
    discount: float


class ReleaseResponse(BaseModel):
    orderId: str
    released: int


class DiscountTierResponse(BaseModel):
    minAmount: float
    discountAmount: float


class CampaignResponse(BaseModel):
    id: UUID
    name: str
    type: str
    typeLabel: str
    description: Optional[str]
    image: Optional[str]
    state: str
    isActive: bool
    tiers: List[DiscountTierResponse]
    rulesValid: bool
    startTime: datetime
    endTime: datetime


class CampaignPageResponse(BaseModel):
    items: List[CampaignResponse]
    total: int
    page: int
    pageSize: int


class CampaignDiscountResponse(BaseModel):
    discount: float
    campaign: Optional[CampaignResponse]


def _raise_http(error: PromotionError) -> NoReturn:
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, RuleViolationError):
        code = 422
    else:
        code = status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=code, detail={"code": error.code, "message": error.message}) from error


@router.get("/coupons", response_model=CouponPageResponse)
async def list_coupons(
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, alias="pageSize", ge=1),
    user_id: UUID | None = Depends(optional_member_id),
    db: AsyncSession = Depends(get_session),
) -> CouponPageResponse:
    items, total = await CouponService(db).list_claimable_coupons(user_id, page=page, page_size=page_size)
    return CouponPageResponse(
        items=[_serialize_availability(item) for item in items],
        total=total,
        page=page,
        pageSize=page_bounds(page, page_size)[1],
    )


@router.get("/coupons/{coupon_id}", response_model=CouponAvailabilityResponse)
async def get_coupon(
    coupon_id: UUID,
    user_id: UUID | None = Depends(optional_member_id),
    db: AsyncSession = Depends(get_session),
) -> CouponAvailabilityResponse:
    try:
        detail = await CouponService(db).get_coupon_detail(coupon_id, user_id)
    except PromotionError as error:
        _raise_http(error)
    return _serialize_availability(detail)


@router.post(
    "/coupons/{coupon_id}/claim",
    response_model=UserCouponResponse,
    status_code=status.HTTP_201_CREATED,
)
async def claim_coupon(
    coupon_id: UUID,
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> UserCouponResponse:
    try:
        user_coupon = await CouponService(db).claim(coupon_id, member.id)
        view = await UserCouponService(db).get_user_coupon_detail(member.id, user_coupon.id)
    except PromotionError as error:
        _raise_http(error)
    return _serialize_user_coupon(view)


@router.get("/user-coupons", response_model=UserCouponPageResponse)
async def list_user_coupons(
    status_filter: UserCouponStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, alias="pageSize", ge=1),
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> UserCouponPageResponse:
    views, total = await UserCouponService(db).list_user_coupons(
        member.id, status=status_filter, page=page, page_size=page_size
    )
    return UserCouponPageResponse(
        items=[_serialize_user_coupon(view) for view in views],
        total=total,
        page=page,
        pageSize=page_bounds(page, page_size)[1],
    )


@router.get("/user-coupons/available", response_model=UserCouponPageResponse)
async def list_available_user_coupons(
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, alias="pageSize", ge=1),
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> UserCouponPageResponse:
    views, total = await UserCouponService(db).list_available_coupons(member.id, page=page, page_size=page_size)
    return UserCouponPageResponse(
        items=[_serialize_user_coupon(view) for view in views],
        total=total,
        page=page,
        pageSize=page_bounds(page, page_size)[1],
    )


@router.get("/user-coupons/for-order", response_model=List[UserCouponResponse])
async def list_coupons_for_order(
    amount: Decimal = Query(..., ge=0),
    scope: CouponScope = Query(CouponScope.ALL),
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[UserCouponResponse]:
    views = await UserCouponService(db).get_available_coupons_for_order(member.id, scope, amount)
    return [_serialize_user_coupon(view) for view in views]


@router.get("/user-coupons/best", response_model=BestCouponResponse)
async def get_best_coupon(
    amount: Decimal = Query(..., ge=0),
    scope: CouponScope = Query(CouponScope.ALL),
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> BestCouponResponse:
    user_coupon, discount = await CouponService(db).get_best_coupon_for_order(member.id, scope, amount)
    if user_coupon is None:
        return BestCouponResponse(userCoupon=None, discount=float(discount))
    view = await UserCouponService(db).get_user_coupon_detail(member.id, user_coupon.id)
    view.discount = discount
    return BestCouponResponse(userCoupon=_serialize_user_coupon(view), discount=float(discount))


@router.get("/user-coupons/count", response_model=UserCouponCountResponse)
async def count_user_coupons(
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> UserCouponCountResponse:
    counts = await UserCouponService(db).count_by_status(member.id)
    return UserCouponCountResponse(**counts)


@router.get("/user-coupons/{user_coupon_id}", response_model=UserCouponResponse)
async def get_user_coupon(
    user_coupon_id: UUID,
    member: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> UserCouponResponse:
    try:
        view = await UserCouponService(db).get_user_coupon_detail(member.id, user_coupon_id)
    except PromotionError as error:
        _raise_http(error)
    return _serialize_user_coupon(view)


@router.post(
    "/user-coupons/{user_coupon_id}/use",
    response_model=UseCouponResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def use_user_coupon(
    user_coupon_id: UUID,
    payload: UseCouponRequest,
    db: AsyncSession = Depends(get_session),
) -> UseCouponResponse:
    service = UserCouponService(db)
    try:
        user_coupon, discount = await service.use_coupon(user_coupon_id, payload.orderId, payload.orderAmount)
        view = await service.get_user_coupon_detail(user_coupon.user_id, user_coupon.id)
    except PromotionError as error:
        _raise_http(error)
    view.discount = discount
    return UseCouponResponse(userCoupon=_serialize_user_coupon(view), discount=float(discount))


@router.post(
    "/user-coupons/{user_coupon_id}/unuse",
    response_model=UserCouponResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def unuse_user_coupon(
    user_coupon_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> UserCouponResponse:
    service = UserCouponService(db)
    try:
        user_coupon = await service.unuse_coupon(user_coupon_id)
        view = await service.get_user_coupon_detail(user_coupon.user_id, user_coupon_id)
    except PromotionError as error:
        _raise_http(error)
    return _serialize_user_coupon(view)


@router.post(
    "/orders/{order_id}/release",
    response_model=ReleaseResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def release_order_coupons(
    order_id: str,
    db: AsyncSession = Depends(get_session),
) -> ReleaseResponse:
    released = await UserCouponService(db).unuse_coupon_for_order(order_id)
    return ReleaseResponse(orderId=order_id, released=released)


@router.get("/campaigns", response_model=CampaignPageResponse)
async def list_campaigns(
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, alias="pageSize", ge=1),
    db: AsyncSession = Depends(get_session),
) -> CampaignPageResponse:
    try:
        views, total = await CampaignService(db).list_active_campaigns(page=page, page_size=page_size)
    except PromotionError as error:
        _raise_http(error)
    return CampaignPageResponse(
        items=[_serialize_campaign(view) for view in views],
        total=total,
        page=page,
        pageSize=page_bounds(page, page_size)[1],
    )


@router.get("/campaigns/discount", response_model=CampaignDiscountResponse)
async def calculate_campaign_discount(
    amount: Decimal = Query(..., ge=0),
    db: AsyncSession = Depends(get_session),
) -> CampaignDiscountResponse:
    service = CampaignService(db)
    try:
        discount, campaign = await service.calculate_discount_campaign(amount)
    except PromotionError as error:
        _raise_http(error)
    return CampaignDiscountResponse(
        discount=float(discount),
        campaign=_serialize_campaign(service.build_view(campaign)) if campaign is not None else None,
    )


@router.get("/campaigns/types/{campaign_type}", response_model=List[CampaignResponse])
async def list_campaigns_by_type(
    campaign_type: CampaignType,
    db: AsyncSession = Depends(get_session),
) -> List[CampaignResponse]:
    try:
        views = await CampaignService(db).get_campaigns_by_type(campaign_type)
    except PromotionError as error:
        _raise_http(error)
    return [_serialize_campaign(view) for view in views]


@router.get("/campaigns/{campaign_id}", response_model=CampaignResponse)
async def get_campaign(
    campaign_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> CampaignResponse:
    try:
        view = await CampaignService(db).get_campaign_detail(campaign_id)
    except PromotionError as error:
        _raise_http(error)
    return _serialize_campaign(view)


def _serialize_coupon(coupon: Coupon) -> CouponResponse:
    return CouponResponse(
        id=coupon.id,
        name=coupon.name,
        description=coupon.description,
        discountType=coupon.discount_type.value,
        value=float(coupon.value),
        minAmount=float(coupon.min_amount or 0),
        maxDiscount=float(coupon.max_discount) if coupon.max_discount is not None else None,
        applicableScope=coupon.applicable_scope.value,
        totalCount=coupon.total_count,
        receivedCount=coupon.received_count,
        usedCount=coupon.used_count,
        perUserLimit=coupon.per_user_limit,
        startTime=coupon.start_time,
        endTime=coupon.end_time,
        validDays=coupon.valid_days,
        status=coupon.status.value,
    )


def _serialize_availability(item: CouponAvailability) -> CouponAvailabilityResponse:
    return CouponAvailabilityResponse(
        coupon=_serialize_coupon(item.coupon),
        receivedByUser=item.received_by_user,
        remainCount=item.remaining,
        canReceive=item.can_claim,
        reason=item.reason,
    )


def _serialize_user_coupon(view: UserCouponView) -> UserCouponResponse:
    record = view.user_coupon
    return UserCouponResponse(
        id=record.id,
        couponId=record.coupon_id,
        status=record.status.value,
        displayStatus=view.display_status.value,
        isAvailable=view.is_available,
        daysRemaining=view.days_remaining,
        orderId=record.order_id,
        claimedAt=record.claimed_at,
        expiresAt=record.expires_at,
        usedAt=record.used_at,
        discount=float(view.discount) if view.discount is not None else None,
        coupon=_serialize_coupon(view.coupon) if view.coupon is not None else None,
    )


def _serialize_campaign(view: CampaignView) -> CampaignResponse:
    campaign = view.campaign
    return CampaignResponse(
        id=campaign.id,
        name=campaign.name,
        type=campaign.campaign_type.value,
        typeLabel=view.type_label,
        description=campaign.description,
        image=campaign.image,
        state=view.state.value,
        isActive=view.is_active,
        tiers=[
            DiscountTierResponse(minAmount=float(tier.min_amount), discountAmount=float(tier.discount_amount))
            for tier in view.tiers
        ],
        rulesValid=view.rules_valid,
        startTime=campaign.start_time,
        endTime=campaign.end_time,
    )

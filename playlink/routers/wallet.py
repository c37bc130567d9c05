from fastapi import APIRouter, Depends, Query

from playlink.deps import CurrentUser, can_read_wallet
from playlink.ledger import wallet_summary
from playlink.schemas import WalletSummaryResponse

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/me", response_model=WalletSummaryResponse)
async def my_wallet(
    limit: int = Query(default=50, ge=1, le=200),
    current_user: CurrentUser = Depends(can_read_wallet),
) -> WalletSummaryResponse:
    summary = await wallet_summary(current_user.id, limit=limit)
    return WalletSummaryResponse.model_validate(summary, from_attributes=True)

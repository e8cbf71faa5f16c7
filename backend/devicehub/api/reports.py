"""Usage report endpoints"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from devicehub.api.deps import get_auth_context
from devicehub.database import get_db
from devicehub.schemas.report import UsageReport
from devicehub.services.usage_reports import generate_usage_report_for_user
from devicehub.utils.dates import parse_date_range
from devicehub.utils.jwt_utils import AuthContext

router = APIRouter(prefix="/usage-reports", tags=["reports"])


@router.get("", response_model=UsageReport)
def get_usage_report(
    startDate: str = Query(None),
    endDate: str = Query(None),
    groupBy: str = Query("day"),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """
    Total ``units_consumed`` across all of the caller's devices, bucketed by
    ``day`` or ``hour``.

    Buckets without readings are omitted, not zero-filled.
    """
    start, end = parse_date_range(startDate, endDate)
    return generate_usage_report_for_user(db, ctx.user_id, start, end, groupBy)

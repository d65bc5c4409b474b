from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from schoolchat.core.database import get_db
from schoolchat.core.security import require_admin
from schoolchat.models.schemas_reports import Stats, UsageReport
from schoolchat.services import reports as report_svc

router = APIRouter(prefix="/reports", tags=["Reports"],
                   dependencies=[Depends(require_admin)])

_AGGREGATORS = {
    "user": report_svc.usage_by_user,
    "class": report_svc.usage_by_class,
    "date": report_svc.usage_by_date,
}


@router.get("/usage", response_model=UsageReport)
def usage(
    group_by: str = "user",
    class_name: Optional[str] = Query(None, alias="class"),
    user_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    aggregate = _AGGREGATORS.get(group_by)
    if aggregate is None:
        raise HTTPException(status_code=400, detail="Invalid group_by parameter")
    rows = aggregate(db, class_name=class_name, user_id=user_id, start=start_date, end=end_date)
    return UsageReport(group_by=group_by, usage=rows)


@router.get("/stats", response_model=Stats)
def stats(db: Session = Depends(get_db)):
    return report_svc.stats(db)

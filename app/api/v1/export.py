"""
CSV export endpoint
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.application.csv_export import CsvExportService


router = APIRouter(prefix="/api/v1/export", tags=["export"])


@router.get("/{file_name}", response_class=PlainTextResponse)
def export_csv(file_name: str, db: Session = Depends(get_db)):
    """goals.csv / assets.csv / value_changes.csv"""
    files = CsvExportService(db).build()
    if file_name not in files:
        raise HTTPException(status_code=404, detail=f"Unknown export file: {file_name}")
    return PlainTextResponse(files[file_name], media_type="text/csv")

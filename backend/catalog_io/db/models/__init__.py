"""Database models package."""
from catalog_io.db.models.campaign import Campaign
from catalog_io.db.models.export_job import ExportJob
from catalog_io.db.models.import_job import ImportJob, JobStatus
from catalog_io.db.models.import_row_error import ImportRowError
from catalog_io.db.models.import_template import ImportTemplate
from catalog_io.db.models.product import Product

__all__ = [
    "Campaign",
    "ExportJob",
    "ImportJob",
    "ImportRowError",
    "ImportTemplate",
    "JobStatus",
    "Product",
]

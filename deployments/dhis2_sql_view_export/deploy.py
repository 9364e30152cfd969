"""Register the DHIS2 SQL view export deployment programmatically.

Usage:
    PREFECT_API_URL=http://localhost:4200/api uv run python deployments/dhis2_sql_view_export/deploy.py
"""

from flow import dhis2_sql_view_export_flow

if __name__ == "__main__":
    dhis2_sql_view_export_flow.deploy(
        name="dhis2-sql-view-export",
        work_pool_name="default",
        cron="0 2 * * *",
        parameters={"sql_view_id": "qMYMT0iUGkG"},
    )

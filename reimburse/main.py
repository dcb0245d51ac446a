from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file before settings are read
load_dotenv()

from reimburse.api.reimbursements import router as reimbursements_router


def create_app() -> FastAPI:
    app = FastAPI(
        title="Reimbursement Review Service",
        description="Review workflow for member reimbursement requests: receipt audits, notes and status changes.",
        version="0.1.0",
    )

    @app.get("/health", tags=["health"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(reimbursements_router)

    return app


app = create_app()

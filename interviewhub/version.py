# interviewhub/version.py

SERVICE_NAME = "interviewhub-api"
SERVICE_VERSION = "0.1.0"
SCHEMA_VERSION = "profiles+interview_experiences+likes"


def service_version_payload() -> dict:
    """Used by /version endpoints."""
    return {
        "service": f"{SERVICE_NAME}:{SERVICE_VERSION}",
        "service_version": SERVICE_VERSION,
        "schema_version": SCHEMA_VERSION,
    }

from wabridge.callback.client import forward_to_webhook
from wabridge.observability.logging import log


def forward_inbound_job(payload: dict, message_id: str = ""):
    """
    Worker-side webhook forward (FORWARD_MODE=rq). Runs once; a failed POST is
    logged by forward_to_webhook and the job still completes so RQ does not retry.
    """
    log(event="forward_job_start", messageId=message_id)
    return forward_to_webhook(payload, message_id=message_id)

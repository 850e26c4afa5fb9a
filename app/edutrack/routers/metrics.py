from fastapi import APIRouter, Response

from app.edutrack.core.metrics import metrics

router = APIRouter()


@router.get("/edutrack/ops/metrics")
def get_metrics():
    snapshot = metrics.render()
    return Response(content=snapshot.content, media_type=snapshot.content_type)

"""
Analysis orchestrator.

Exactly one model round trip per routed request. No persistence happens here;
the caller decides what to do with the verdict.
"""

from suraksha.schemas.analyze_schemas import (
    AnalysisRequest,
    ContentAnalysisRequest,
    ContentVerdict,
    SourceHint,
    UrlAnalysisRequest,
    UrlVerdict,
)
from suraksha.services.llm_client import LLMClient
from suraksha.utils.logging_config import StructuredLogger, track_analysis

logger = StructuredLogger("suraksha.analysis")


def _drop_video_findings(verdict: ContentVerdict) -> ContentVerdict:
    detailed = verdict.detailed_analysis.model_copy(update={"video_analysis": None})
    return verdict.model_copy(update={"detailed_analysis": detailed})


@track_analysis("content")
def analyze_content(request: ContentAnalysisRequest, llm: LLMClient) -> ContentVerdict:
    verdict = llm.score_content(request)
    if request.source != SourceHint.VIDEO and verdict.detailed_analysis.video_analysis is not None:
        verdict = _drop_video_findings(verdict)
    logger.info(
        "Content analysis completed",
        source=request.source.value if request.source else None,
        status=verdict.information_status.value,
    )
    return verdict


@track_analysis("url")
def analyze_url(request: UrlAnalysisRequest, llm: LLMClient) -> UrlVerdict:
    verdict = llm.score_url(request)
    logger.info("URL analysis completed", status=verdict.safety_status.value)
    return verdict


def run_analysis(request: AnalysisRequest, llm: LLMClient):
    if isinstance(request, UrlAnalysisRequest):
        return analyze_url(request, llm)
    if isinstance(request, ContentAnalysisRequest):
        return analyze_content(request, llm)
    raise TypeError(f"Unsupported analysis request: {type(request).__name__}")

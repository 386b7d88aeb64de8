"""
Production wiring of the processing pipeline.

The orchestrator, the queue dispatcher and the transcode sweep share one
set of adapters built from Settings.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from mediaflow.analysis.rekognition import RekognitionAnalyzer
from mediaflow.config.settings import Settings
from mediaflow.ledger import create_job_ledger
from mediaflow.media.transforms import ImageTransformer
from mediaflow.media.video_probe import VideoProbe
from mediaflow.pipeline.orchestrator import ProcessingOrchestrator
from mediaflow.pipeline.profile import HttpProfileNotifier
from mediaflow.pipeline.sweep import TranscodeSweep
from mediaflow.queue.dispatcher import QueueDispatcher, Route
from mediaflow.queue.dlq import DeadLetterQueue
from mediaflow.queue.handlers import JobResultHandler, UploadReadyHandler
from mediaflow.queue.manager import get_queue
from mediaflow.storage.factory import get_object_store
from mediaflow.transcoding.mediaconvert import MediaConvertTranscoder

logger = logging.getLogger(__name__)


def build_transformer(settings: Settings) -> ImageTransformer:
    return ImageTransformer(
        thumbnail_size=settings.thumbnail_size,
        optimized_width=settings.optimized_width,
        optimized_quality=settings.optimized_quality,
        rendition_widths=settings.rendition_widths,
        max_source_pixels=settings.max_source_pixels,
    )


def build_orchestrator(settings: Settings,
                       session_factory: Optional[Callable[[], Session]] = None) -> ProcessingOrchestrator:
    """Create the orchestrator with the adapters selected by settings."""
    analyzer = RekognitionAnalyzer(
        bucket=settings.s3_bucket,
        region=settings.rekognition_region or settings.aws_region,
        taxonomy=settings.moderation_taxonomy,
        max_labels=settings.detection_max_labels,
        min_confidence=settings.detection_min_confidence,
        moderation_min_confidence=settings.moderation_min_confidence,
        sns_topic_arn=settings.video_moderation_sns_topic_arn,
        role_arn=settings.video_moderation_role_arn,
        connect_timeout=settings.adapter_connect_timeout_seconds,
        read_timeout=settings.adapter_timeout_seconds,
    )
    transcoder = MediaConvertTranscoder(
        bucket=settings.s3_bucket,
        role_arn=settings.mediaconvert_role_arn,
        region=settings.mediaconvert_region or settings.aws_region,
        endpoint=settings.mediaconvert_endpoint,
        template=settings.mediaconvert_template,
        input_prefix=settings.video_input_prefix,
        output_prefix=settings.transcode_output_prefix,
        segment_seconds=settings.hls_segment_seconds,
        stream_base_url=settings.stream_base_url,
        connect_timeout=settings.adapter_connect_timeout_seconds,
        read_timeout=settings.adapter_timeout_seconds,
    )
    notifier = HttpProfileNotifier(
        base_url=settings.profile_service_url,
        api_key=settings.profile_service_api_key,
        timeout=settings.adapter_timeout_seconds,
        connect_timeout=settings.adapter_connect_timeout_seconds,
    )
    if not settings.profile_service_url:
        logger.warning("profile_service_url is not set; profile image ingests will fail")

    return ProcessingOrchestrator(
        store=get_object_store(),
        transformer=build_transformer(settings),
        analyzer=analyzer,
        transcoder=transcoder,
        ledger=create_job_ledger(settings),
        profile_notifier=notifier,
        video_probe=VideoProbe(),
        session_factory=session_factory,
        cache_control=settings.cache_control,
    )


def build_dispatcher(settings: Settings, orchestrator: ProcessingOrchestrator,
                     session_factory: Optional[Callable[[], Session]] = None) -> QueueDispatcher:
    """Route the upload-ready and job-result queues to their handlers."""
    routes = [
        Route(get_queue(settings.upload_ready_queue),
              UploadReadyHandler(orchestrator, session_factory)),
        Route(get_queue(settings.job_result_queue), JobResultHandler(orchestrator)),
    ]
    return QueueDispatcher(
        routes=routes,
        dlq=DeadLetterQueue(settings.dlq_path),
        max_receive_count=settings.max_receive_count,
        threads_per_queue=max(1, settings.worker_threads // len(routes)),
        poll_timeout=1.0 if settings.queue_backend == "inproc" else settings.receive_wait_seconds,
    )


def build_sweep(settings: Settings, orchestrator: ProcessingOrchestrator,
                session_factory: Optional[Callable[[], Session]] = None) -> TranscodeSweep:
    return TranscodeSweep(
        orchestrator=orchestrator,
        transcoder=orchestrator.transcoder,
        ledger=orchestrator.ledger,
        interval_seconds=settings.sweep_interval_seconds,
        session_factory=session_factory,
    )

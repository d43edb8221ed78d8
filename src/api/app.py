"""
Quart application exposing sources, collection, processing, digests, stats
and LLM provider status as a JSON API.
"""
import logging
from datetime import date
from typing import Optional

from pydantic import ValidationError
from quart import Quart, jsonify, request
from quart_cors import cors

from api.serializers import (
    digest_to_dict,
    processed_item_to_dict,
    source_to_dict,
)
from core.entities import DigestStatus, ModerationStatus, Priority, SourceType
from core.errors import (
    AlreadyProcessingError,
    CollectorError,
    DigestLockedError,
    NoProviderAvailableError,
    ProviderError,
    ProviderNotConfiguredError,
    RecordNotFoundError,
    UnknownProviderError,
)
from core.schemas import DigestUpdate, SourceCreate, SourceUpdate
from services.context import AppContext

logger = logging.getLogger(__name__)


class BadRequest(Exception):
    pass


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise BadRequest(f"Invalid date, expected YYYY-MM-DD: {value}")


def _parse_enum(enum_cls, value: Optional[str]):
    if value is None:
        return None
    try:
        return enum_cls(value.lower())
    except ValueError:
        raise BadRequest(f"Invalid {enum_cls.__name__}: {value}")


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


async def _json_body() -> dict:
    data = await request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Expected a JSON object body")
    return data


def create_app(context: AppContext, start_scheduler: bool = True) -> Quart:
    app = Quart(__name__)
    app = cors(app)
    app.config["CONTEXT"] = context

    # ==================== Lifecycle ====================

    @app.before_serving
    async def startup():
        await context.startup(start_scheduler=start_scheduler)
        logger.info("API started")

    @app.after_serving
    async def shutdown():
        await context.shutdown()

    # ==================== Errors ====================

    def _error(status: int, message: str):
        return jsonify({"error": message, "status": status}), status

    @app.errorhandler(BadRequest)
    async def handle_bad_request(e):
        return _error(400, str(e))

    @app.errorhandler(ValidationError)
    async def handle_validation(e):
        return _error(400, str(e))

    @app.errorhandler(UnknownProviderError)
    async def handle_unknown_provider(e):
        return _error(400, str(e))

    @app.errorhandler(ProviderNotConfiguredError)
    async def handle_not_configured(e):
        return _error(400, str(e))

    @app.errorhandler(RecordNotFoundError)
    async def handle_not_found(e):
        return _error(404, str(e))

    @app.errorhandler(AlreadyProcessingError)
    async def handle_already_processing(e):
        return _error(409, str(e))

    @app.errorhandler(DigestLockedError)
    async def handle_locked(e):
        return _error(409, str(e))

    @app.errorhandler(CollectorError)
    async def handle_collector(e):
        return _error(502, str(e))

    @app.errorhandler(ProviderError)
    async def handle_provider(e):
        return _error(502, str(e))

    @app.errorhandler(NoProviderAvailableError)
    async def handle_no_provider(e):
        return _error(503, str(e))

    # ==================== Health ====================

    @app.route("/health")
    async def health():
        return jsonify({"status": "ok", "processing": context.processing.is_running})

    # ==================== Sources ====================

    @app.route("/sources", methods=["GET"])
    async def list_sources():
        sources = await context.sources.list(
            type=_parse_enum(SourceType, request.args.get("type")),
            is_active=_parse_bool(request.args.get("isActive")),
            priority=_parse_enum(Priority, request.args.get("priority")),
        )
        return jsonify([source_to_dict(s) for s in sources])

    @app.route("/sources/health", methods=["GET"])
    async def sources_health():
        return jsonify(await context.stats.source_health())

    @app.route("/sources/<int:source_id>", methods=["GET"])
    async def get_source(source_id: int):
        return jsonify(source_to_dict(await context.sources.get(source_id)))

    @app.route("/sources", methods=["POST"])
    async def create_source():
        payload = SourceCreate.model_validate(await _json_body())
        source = await context.sources.create(
            name=payload.name,
            type=payload.type,
            url=payload.url,
            config=payload.config,
            priority=payload.priority,
            check_frequency=payload.check_frequency,
            is_active=payload.is_active,
        )
        return jsonify(source_to_dict(source)), 201

    @app.route("/sources/<int:source_id>", methods=["PUT"])
    async def update_source(source_id: int):
        payload = SourceUpdate.model_validate(await _json_body())
        source = await context.sources.update(source_id, payload.model_dump(exclude_none=True))
        return jsonify(source_to_dict(source))

    @app.route("/sources/<int:source_id>", methods=["DELETE"])
    async def delete_source(source_id: int):
        await context.sources.delete(source_id)
        return jsonify({"deleted": source_id})

    # ==================== Collection / processing ====================

    @app.route("/collect", methods=["POST"])
    async def collect_all():
        reports = await context.dispatcher.trigger_all()
        return jsonify([r.to_dict() for r in reports])

    @app.route("/collect/<int:source_id>", methods=["POST"])
    async def collect_source(source_id: int):
        new_items = await context.dispatcher.trigger_source(source_id)
        return jsonify({"sourceId": source_id, "newItems": new_items})

    @app.route("/processing/run", methods=["POST"])
    async def run_processing():
        limit = request.args.get("limit", type=int)
        processed = await context.processing.trigger(limit)
        return jsonify({"processed": processed})

    # ==================== Processed items ====================

    @app.route("/processed-items", methods=["GET"])
    async def list_processed_items():
        items = await context.processed_items.list(
            limit=request.args.get("limit", 50, type=int),
            offset=request.args.get("offset", 0, type=int),
            category=request.args.get("category"),
        )
        return jsonify([processed_item_to_dict(i) for i in items])

    @app.route("/processed-items/<int:item_id>", methods=["GET"])
    async def get_processed_item(item_id: int):
        return jsonify(processed_item_to_dict(await context.processed_items.get(item_id)))

    @app.route("/processed-items/<int:item_id>/approve", methods=["POST"])
    async def approve_item(item_id: int):
        item = await context.processed_items.set_moderation(item_id, ModerationStatus.APPROVED)
        return jsonify(processed_item_to_dict(item))

    @app.route("/processed-items/<int:item_id>/reject", methods=["POST"])
    async def reject_item(item_id: int):
        item = await context.processed_items.set_moderation(item_id, ModerationStatus.REJECTED)
        return jsonify(processed_item_to_dict(item))

    # ==================== Digests ====================

    @app.route("/digests/generate", methods=["POST"])
    async def generate_digest():
        day = _parse_date(request.args.get("date"))
        if day is None:
            digest = await context.digest_generator.generate_daily()
        else:
            digest = await context.digest_generator.generate_for_date(day)
        return jsonify({"generated": digest is not None, "digest": digest_to_dict(digest)})

    @app.route("/digests", methods=["GET"])
    async def list_digests():
        digests = await context.digest_generator.list(
            status=_parse_enum(DigestStatus, request.args.get("status")),
            limit=request.args.get("limit", type=int),
        )
        return jsonify([digest_to_dict(d) for d in digests])

    @app.route("/digests/latest", methods=["GET"])
    async def latest_digest():
        digest = await context.digest_generator.latest()
        if digest is None:
            raise RecordNotFoundError("No published digest yet")
        return jsonify(digest_to_dict(digest))

    @app.route("/digests/<ident>", methods=["GET"])
    async def get_digest(ident: str):
        if ident.isdigit():
            digest = await context.digest_generator.get(int(ident))
        else:
            digest = await context.digest_generator.get_by_date(_parse_date(ident))
            if digest is None:
                raise RecordNotFoundError(f"No digest for {ident}")
        return jsonify(digest_to_dict(digest))

    @app.route("/digests/<int:digest_id>", methods=["PUT"])
    async def update_digest(digest_id: int):
        payload = DigestUpdate.model_validate(await _json_body())
        digest = await context.digest_generator.update(digest_id, title=payload.title, content=payload.content)
        return jsonify(digest_to_dict(digest))

    @app.route("/digests/<int:digest_id>/publish", methods=["POST"])
    async def publish_digest(digest_id: int):
        return jsonify(digest_to_dict(await context.digest_generator.publish(digest_id)))

    # ==================== Stats ====================

    @app.route("/stats", methods=["GET"])
    async def system_stats():
        return jsonify(await context.stats.system_stats())

    @app.route("/stats/llm", methods=["GET"])
    async def llm_stats():
        return jsonify(await context.stats.llm_usage(request.args.get("days", 30, type=int)))

    @app.route("/stats/collection", methods=["GET"])
    async def collection_stats():
        return jsonify(await context.stats.collection_stats(request.args.get("days", 7, type=int)))

    @app.route("/stats/categories", methods=["GET"])
    async def category_stats():
        return jsonify(await context.stats.category_distribution())

    @app.route("/stats/tags", methods=["GET"])
    async def tag_stats():
        return jsonify(await context.stats.tag_cloud(request.args.get("limit", 30, type=int)))

    # ==================== LLM providers ====================

    @app.route("/llm/providers", methods=["GET"])
    async def llm_providers():
        return jsonify({
            "default": context.llm.default_provider.value,
            "fallback": context.llm.fallback_provider.value,
            "providers": context.llm.available_providers(),
        })

    @app.route("/llm/providers/default", methods=["PUT"])
    async def set_default_provider():
        data = await _json_body()
        context.llm.set_default(data.get("name", ""))
        return jsonify({"default": context.llm.default_provider.value})

    return app

# routes/personal_routes.py
from flask import Blueprint, request, jsonify, current_app
from pydantic import ValidationError
import logging

from schemas.annotation_schemas import (
    BookmarkPayload,
    HighlightPayload,
    NotePayload,
    PlanCompletionPayload,
    VerseRangePayload,
)
from sync.errors import UserInputError
from utils.auth import token_required

logger = logging.getLogger(__name__)
personal_bp = Blueprint('personal_bp', __name__, url_prefix='/api/personal')


def _service():
    return current_app.extensions['personal_store']


def _parse(schema):
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None, (jsonify({"error": "Invalid JSON payload"}), 400)
    try:
        return schema.model_validate(data), None
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = '.'.join(str(part) for part in first.get('loc', ()))
        message = first.get('msg', 'Invalid payload')
        return None, (jsonify({"error": f"{field}: {message}" if field else message}), 400)


def _mutation(current_user_id, action, apply):
    """Run one mutation for the signed-in reader and render the resulting store."""
    try:
        service = _service()
        service.bind_user(current_user_id)
        store = apply(service)
        return jsonify(store.to_dict()), 200
    except UserInputError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error during {action}: {str(e)}", exc_info=True)
        return jsonify({"error": f"Failed to {action}"}), 500


@personal_bp.route("/", methods=['GET'])
@token_required
def get_store(current_user_id):
    try:
        store = _service().bind_user(current_user_id)
        return jsonify(store.to_dict()), 200
    except Exception as e:
        logger.error(f"Error loading personal store: {str(e)}", exc_info=True)
        return jsonify({"error": "Failed to load personal store"}), 500


@personal_bp.route("/session", methods=['POST'])
@token_required
def start_session(current_user_id):
    try:
        store = _service().start_session(current_user_id)
        return jsonify(store.to_dict()), 200
    except UserInputError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error starting personal sync session: {str(e)}", exc_info=True)
        return jsonify({"error": "Failed to start session"}), 500


@personal_bp.route("/session", methods=['DELETE'])
@token_required
def end_session(current_user_id):
    if not _service().end_session(current_user_id):
        return jsonify({"error": "No sync session for this user"}), 403
    return jsonify({"message": "Signed out of personal sync"}), 200


@personal_bp.route("/chapters/<book_id>/<int:chapter>", methods=['GET'])
@token_required
def get_chapter(current_user_id, book_id, chapter):
    try:
        service = _service()
        service.bind_user(current_user_id)
        view = service.chapter_annotations(
            book_id,
            chapter,
            language_code=request.args.get('language'),
            version_code=request.args.get('version'),
        )
        return jsonify({
            "scope": {
                "language_code": view['scope'].language_code,
                "version_code": view['scope'].version_code,
            },
            "bookmarks": [entry.to_dict() for entry in view['bookmarks']],
            "highlights": [entry.to_dict() for entry in view['highlights']],
            "notes": [entry.to_dict() for entry in view['notes']],
        }), 200
    except UserInputError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error loading chapter annotations for {book_id} {chapter}: {str(e)}", exc_info=True)
        return jsonify({"error": "Failed to load chapter annotations"}), 500


@personal_bp.route("/bookmarks", methods=['POST'])
@token_required
def upsert_bookmark(current_user_id):
    payload, error = _parse(BookmarkPayload)
    if error:
        return error
    return _mutation(current_user_id, "save bookmark",
                     lambda service: service.upsert_bookmark(**payload.model_dump()))


@personal_bp.route("/bookmarks", methods=['DELETE'])
@token_required
def remove_bookmark(current_user_id):
    payload, error = _parse(VerseRangePayload)
    if error:
        return error
    return _mutation(current_user_id, "remove bookmark",
                     lambda service: service.remove_bookmark(**payload.model_dump()))


@personal_bp.route("/bookmarks/toggle", methods=['POST'])
@token_required
def toggle_bookmark(current_user_id):
    payload, error = _parse(BookmarkPayload)
    if error:
        return error
    try:
        service = _service()
        service.bind_user(current_user_id)
        store, bookmarked = service.toggle_bookmark(**payload.model_dump())
        return jsonify({"bookmarked": bookmarked, "store": store.to_dict()}), 200
    except UserInputError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Error toggling bookmark: {str(e)}", exc_info=True)
        return jsonify({"error": "Failed to toggle bookmark"}), 500


@personal_bp.route("/highlights", methods=['POST'])
@token_required
def upsert_highlight(current_user_id):
    payload, error = _parse(HighlightPayload)
    if error:
        return error
    return _mutation(current_user_id, "save highlight",
                     lambda service: service.upsert_highlight(**payload.model_dump()))


@personal_bp.route("/highlights", methods=['DELETE'])
@token_required
def remove_highlight(current_user_id):
    payload, error = _parse(VerseRangePayload)
    if error:
        return error
    return _mutation(current_user_id, "remove highlight",
                     lambda service: service.remove_highlight(**payload.model_dump()))


@personal_bp.route("/notes", methods=['POST'])
@token_required
def upsert_note(current_user_id):
    payload, error = _parse(NotePayload)
    if error:
        return error
    return _mutation(current_user_id, "save note",
                     lambda service: service.upsert_note(**payload.model_dump()))


@personal_bp.route("/notes", methods=['DELETE'])
@token_required
def remove_note(current_user_id):
    payload, error = _parse(VerseRangePayload)
    if error:
        return error
    return _mutation(current_user_id, "remove note",
                     lambda service: service.remove_note(**payload.model_dump()))


@personal_bp.route("/plans/<plan_id>/complete", methods=['POST'])
@token_required
def complete_plan_day(current_user_id, plan_id):
    payload, error = _parse(PlanCompletionPayload)
    if error:
        return error
    return _mutation(current_user_id, "mark plan day completed",
                     lambda service: service.mark_plan_day_completed(plan_id, payload.date))

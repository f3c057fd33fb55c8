"""
Request parsing and response helpers shared by the API blueprints

Handlers stay thin: they pull arguments out of the request with these
helpers, call a service and wrap the result in the ``{'success': True}``
envelope. Domain errors propagate to the handlers registered in app.py.
"""

from typing import Any, Dict, Optional, Tuple
from flask import request, jsonify

from exceptions import BusinessValidationError, ResourceNotFoundError
from utils.converters import to_int, to_date, to_bool, to_text


def json_body() -> Dict[str, Any]:
    """The JSON request body as a dict; an empty body is an empty dict."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BusinessValidationError("Request body must be a JSON object")
    return data


def page_args() -> Tuple[Optional[int], Optional[int]]:
    return to_int(request.args.get('page'), 'page'), to_int(request.args.get('per_page'), 'per_page')


def date_args() -> Tuple[Any, Any]:
    return (to_date(request.args.get('start_date'), 'start_date'),
            to_date(request.args.get('end_date'), 'end_date'))


def arg_int(name: str, default: Optional[int] = None) -> Optional[int]:
    return to_int(request.args.get(name), name, default)


def arg_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    return to_bool(request.args.get(name), name, default)


def arg_text(name: str) -> Optional[str]:
    return to_text(request.args.get(name))


def success(status_code: int = 200, **payload):
    body = {'success': True}
    body.update(payload)
    return jsonify(body), status_code


def require_found(entity, resource: str, resource_id: Any):
    """Return ``entity`` or raise ResourceNotFoundError when the lookup came back empty."""
    if entity is None:
        raise ResourceNotFoundError(resource, resource_id)
    return entity

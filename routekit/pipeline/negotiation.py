"""
Content negotiation for response envelopes.

The representation is chosen from the request path suffix (``.json`` or
``.xml`` force the format) or else from the ``Accept`` header:

- ``json``: the envelope as JSON, JSONP-wrapped when a valid callback is named
- ``xml``: the envelope through a generic object-to-XML builder; when the
  envelope cannot be represented the client receives a bare 500
- ``text``: the envelope serialized as a string, ``text/plain``
- anything else: 406 ``Not Acceptable`` without an envelope

Exactly one response is produced per envelope. When the request context has
already sent a response, negotiation writes nothing.
"""

import re
from typing import Any, Dict, Optional, Tuple
from xml.etree.ElementTree import Element, SubElement, tostring

import structlog
from flask import current_app, jsonify, request
from werkzeug.wrappers import Response

from routekit.monitoring.metrics import REPRESENTATIONS
from routekit.utils.exceptions import SerializationError

logger = structlog.get_logger(__name__)

XML_CONTENT_TYPE = 'application/xml; charset=utf-8'

MEDIA_TYPES: Tuple[Tuple[str, str], ...] = (
    ('application/json', 'json'),
    ('application/xml', 'xml'),
    ('text/xml', 'xml'),
    ('text/plain', 'text'),
)

_SUFFIXES = (('.json', 'json'), ('.xml', 'xml'))
_XML_NAME = re.compile(r'^[A-Za-z_][\w.\-]*$')
_JSONP_CALLBACK = re.compile(r'^[\[\]\w$.]+$')


def select_representation(req=None) -> Optional[str]:
    """Name of the representation to send, or None when nothing is acceptable."""
    req = req or request
    path = req.path.lower()
    for suffix, representation in _SUFFIXES:
        if path.endswith(suffix):
            return representation

    accept = req.accept_mimetypes
    if not accept:
        return MEDIA_TYPES[0][1]

    best = accept.best_match([media_type for media_type, _ in MEDIA_TYPES])
    if best is None:
        return None
    return dict(MEDIA_TYPES)[best]


def _fill(element: Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            name = str(key)
            if not _XML_NAME.match(name):
                raise SerializationError(f"Cannot use '{name}' as an XML element name")
            items = item if isinstance(item, list) else [item]
            for entry in items:
                child = SubElement(element, name)
                if isinstance(entry, list):
                    _fill(child, {'item': entry})
                else:
                    _fill(child, entry)
    elif value is None:
        return
    elif isinstance(value, bool):
        element.text = 'true' if value else 'false'
    else:
        element.text = str(value)


def build_xml(payload: Dict[str, Any], root: str = 'root') -> bytes:
    """
    Render a JSON-compatible mapping as an XML document.

    Mapping keys become child elements, lists repeat their parent element and
    ``None`` becomes an empty element.

    Raises:
        SerializationError: A key is not a valid XML element name
    """
    if not _XML_NAME.match(root):
        raise SerializationError(f"Cannot use '{root}' as an XML root element")
    element = Element(root)
    _fill(element, payload)
    return tostring(element, encoding='utf-8', xml_declaration=True)


def _json_compatible(payload: Any) -> Any:
    """Round-trip through the app's JSON provider so dates, UUIDs and the like become plain values."""
    try:
        return current_app.json.loads(current_app.json.dumps(payload))
    except (TypeError, ValueError) as error:
        raise SerializationError(f"Envelope is not serializable: {error}") from error


def _render_json(payload: Any, status_code: int) -> Response:
    callback_param = current_app.config.get('ROUTEKIT_JSONP_CALLBACK')
    callback = request.args.get(callback_param) if callback_param else None
    if callback and _JSONP_CALLBACK.match(callback):
        body = current_app.json.dumps(payload)
        response = current_app.response_class(
            f"/**/ typeof {callback} === 'function' && {callback}({body});",
            mimetype='text/javascript'
        )
    else:
        response = jsonify(payload)
    response.status_code = status_code
    return response


def _render_xml(payload: Any, status_code: int) -> Response:
    try:
        document = build_xml(_json_compatible(payload), current_app.config.get('ROUTEKIT_XML_ROOT', 'root'))
    except SerializationError as error:
        logger.error("XML serialization failed", error=str(error), status_code=status_code)
        return current_app.response_class(status=500)
    return current_app.response_class(document, status=status_code, content_type=XML_CONTENT_TYPE)


def _render_text(payload: Any, status_code: int) -> Response:
    return current_app.response_class(
        current_app.json.dumps(payload), status=status_code, mimetype='text/plain'
    )


_RENDERERS = {
    'json': _render_json,
    'xml': _render_xml,
    'text': _render_text,
}


def negotiate(envelope, ctx=None) -> Optional[Response]:
    """
    Serialize an envelope in the representation the client accepts.

    Args:
        envelope: ``SuccessEnvelope`` or ``ErrorEnvelope``
        ctx: Request context; when it already sent a response nothing is written

    Returns:
        The response written for the request
    """
    if ctx is not None and ctx.headers_sent:
        logger.debug("Response already sent, skipping negotiation", path=request.path)
        return ctx.response

    representation = select_representation()
    if representation is None:
        response = current_app.response_class('Not Acceptable', status=406, mimetype='text/plain')
    else:
        payload = envelope.to_dict()
        if payload is None:
            response = current_app.response_class(status=envelope.status_code)
        else:
            response = _RENDERERS[representation](payload, envelope.status_code)

    REPRESENTATIONS.labels(
        representation=representation or 'none',
        status_code=str(response.status_code)
    ).inc()

    if ctx is not None:
        return ctx.send(response)
    return response

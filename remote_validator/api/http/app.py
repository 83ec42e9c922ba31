import logging
from typing import Any, Awaitable, Callable, Mapping, Tuple

from eth_utils import ValidationError
from quart import Response, jsonify, request
from quart_trio import QuartTrio

from remote_validator.api.http.validator import (
    GET,
    Context,
    Request,
    ServerHandlers,
)
from remote_validator.exceptions import (
    BeaconNodeRejection,
    BeaconNodeRequestFailure,
    InvalidRequest,
)

logger = logging.getLogger("remote_validator.api.http.app")

Handler = Callable[[Context, Request], Awaitable[Any]]

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_SERVICE_UNAVAILABLE = 503


def _error(status: int, message: str) -> Tuple[Response, int]:
    return jsonify({"code": status, "message": message}), status


def _make_view(
    handler: Handler, context: Context, method: str
) -> Callable[[], Awaitable[Tuple[Response, int]]]:
    async def _view() -> Tuple[Response, int]:
        if method == GET:
            payload: Any = request.args.to_dict()
        else:
            payload = await request.get_json(force=True, silent=True)

        try:
            result = await handler(context, payload)
        except (InvalidRequest, ValidationError, BeaconNodeRejection) as err:
            return _error(HTTP_BAD_REQUEST, str(err))
        except BeaconNodeRequestFailure as err:
            logger.warning("%s %s could not be served: %s", method, request.path, err)
            return _error(HTTP_SERVICE_UNAVAILABLE, str(err))

        if result is None and method == GET:
            return _error(HTTP_NOT_FOUND, f"nothing to serve at {request.path}")
        return jsonify({"data": result}), HTTP_OK

    return _view


def register_routes(
    app: Any,
    context: Context,
    handlers: Mapping[str, Mapping[str, Handler]] = ServerHandlers,
) -> None:
    """
    Register one rule for every (path, method) pair of ``handlers`` on ``app``.
    """
    for path, method_handlers in handlers.items():
        for method, handler in method_handlers.items():
            app.add_url_rule(
                path,
                endpoint=f"{method}:{path}",
                view_func=_make_view(handler, context, method),
                methods=[method],
            )


def create_app(context: Context) -> QuartTrio:
    app = QuartTrio(__name__)
    app.config["context"] = context
    register_routes(app, context)
    return app

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from inspect import signature
from typing import Any, get_type_hints

from punq import Container
from pydantic import BaseModel, ValidationError
from pydantic_core import to_jsonable_python

from forks_backend.git.git_manager import GitManager
from forks_backend.shared.configuration import Configuration
from forks_backend.shared.errors import ForksError
from forks_backend.shared.protocol import INVALID_PARAMS, UNKNOWN_METHOD, RpcRequest, RpcResponse

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class ServiceDependencies:
    config: Configuration
    git_manager: GitManager


@dataclass(frozen=True)
class InvocationContext:
    deps: ServiceDependencies
    params_obj: BaseModel


class RpcRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[RpcRequest, ServiceDependencies], Awaitable[RpcResponse]]] = {}

    def _build_args(self, fn, *, context: InvocationContext):
        deps = context.deps
        params_obj = context.params_obj
        sig = signature(fn)
        c = Container()
        c.register(Configuration, instance=deps.config)
        c.register(GitManager, instance=deps.git_manager)
        c.register(ServiceDependencies, instance=deps)
        args = []
        type_hints = get_type_hints(fn)
        for p in sig.parameters.values():
            anno = type_hints.get(p.name, p.annotation)
            if anno is type(params_obj):
                args.append(params_obj)
            else:
                args.append(c.resolve(anno))
        return args

    def _wrap_method[ParamsT: BaseModel](self, method: str, params_model: type[ParamsT], handler: Handler) -> None:
        async def _wrapped(req: RpcRequest, deps: ServiceDependencies) -> RpcResponse:
            try:
                params = params_model.model_validate(req.params)
            except ValidationError:
                return RpcResponse.failure(req.id, INVALID_PARAMS)

            try:
                args = self._build_args(handler, context=InvocationContext(deps=deps, params_obj=params))
                result = await handler(*args)
                return RpcResponse.success(req.id, to_jsonable_python(result, by_alias=True))
            except (ForksError, OSError) as e:
                logger.info("Method %s failed: %s", method, e)
                return RpcResponse.failure(req.id, str(e))
            except Exception as e:
                logger.exception("Unhandled error in method %s", method)
                return RpcResponse.failure(req.id, f"internal error: {e}")

        self._handlers[method] = _wrapped

    def method[ParamsT: BaseModel](self, name: str, *, params: type[ParamsT]):
        def deco(fn: Handler):
            # DI-driven signature: the params model plus any registered service
            self._wrap_method(name, params, fn)
            return fn

        return deco

    def list_methods(self) -> list[str]:
        return list(self._handlers.keys())

    async def dispatch(self, req: RpcRequest, deps: ServiceDependencies) -> RpcResponse:
        wrapped = self._handlers.get(req.method)
        if not wrapped:
            return RpcResponse.failure(req.id, UNKNOWN_METHOD)
        return await wrapped(req, deps)


rpc = RpcRegistry()

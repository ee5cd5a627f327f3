"""
Unary gRPC execution service.

``.proto`` files are compiled at load time with ``grpc_tools.protoc`` into a
descriptor set, which is loaded into a private ``DescriptorPool``. Request
messages are built from JSON with ``json_format`` and sent over a
``grpc.aio`` channel as raw bytes, so no generated stubs are needed.
"""

import asyncio
import json
import os
import tempfile
import threading
import time
from importlib import resources
from pathlib import Path
from typing import Optional

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from google.protobuf.message import DecodeError
from grpc_tools import protoc

from ..exceptions import SchemaLoadError
from ..log import get_logger
from ..schemas.execute import Response
from ..schemas.grpc import SchemaInfo
from ..schemas.request import GrpcRequest
from .auth import auth_metadata
from .http_executor import DEFAULT_TIMEOUT
from .request_pipeline import (
    PreparedRequest,
    RequestSender,
    build_response,
    elapsed_since,
    failure_response,
)
from .variable_substitution import VariableResolver


log = get_logger("grpc")


class ProtoSchema:
    """Services and message types compiled from one ``.proto`` file."""

    def __init__(self, path: str, pool: descriptor_pool.DescriptorPool, file_name: str):
        self.path = path
        self.pool = pool
        self.file = pool.FindFileByName(file_name)

    def info(self) -> SchemaInfo:
        services = [service.full_name for service in self.file.services_by_name.values()]
        methods = {
            service.full_name: [method.name for method in service.methods]
            for service in self.file.services_by_name.values()
        }
        return SchemaInfo(services=services, methods=methods)

    def find_method(self, service_name: str, method_name: str):
        """Return the method descriptor. Raises ``LookupError`` with a readable message."""
        try:
            service = self.pool.FindServiceByName(service_name)
        except KeyError:
            raise LookupError(f"Service {service_name} not found") from None
        method = service.methods_by_name.get(method_name)
        if method is None:
            raise LookupError(f"Method {method_name} not found in service {service_name}")
        return method

    @staticmethod
    def message_class(descriptor):
        return message_factory.GetMessageClass(descriptor)


class ProtoSchemaCache:
    """Compiled schemas keyed by absolute file path."""

    def __init__(self):
        self._schemas: dict[str, ProtoSchema] = {}
        # load() also runs in worker threads; one protoc run at a time
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._schemas)

    def load(self, path: str) -> ProtoSchema:
        key = os.path.abspath(path)
        with self._lock:
            schema = self._schemas.get(key)
            if schema is None:
                schema = self.compile(key)
                self._schemas[key] = schema
            return schema

    def clear(self) -> None:
        with self._lock:
            self._schemas.clear()

    @staticmethod
    def compile(path: str) -> ProtoSchema:
        proto = Path(path)
        if not proto.is_file():
            raise SchemaLoadError(path, "file not found")

        well_known = resources.files("grpc_tools") / "_proto"
        with tempfile.TemporaryDirectory() as tmp:
            output = Path(tmp) / "descriptor.pb"
            exit_code = protoc.main([
                "grpc_tools.protoc",
                f"-I{proto.parent}",
                f"-I{well_known}",
                "--include_imports",
                f"--descriptor_set_out={output}",
                proto.name,
            ])
            if exit_code != 0 or not output.exists():
                raise SchemaLoadError(path, f"protoc exited with status {exit_code}")
            descriptor_set = descriptor_pb2.FileDescriptorSet.FromString(output.read_bytes())

        pool = descriptor_pool.DescriptorPool()
        for file_proto in descriptor_set.file:
            pool.AddSerializedFile(file_proto.SerializeToString())

        log.info("Loaded proto file {} ({} files)", path, len(descriptor_set.file))
        return ProtoSchema(path, pool, proto.name)


def channel_target(url: str) -> tuple[str, bool]:
    """Strip the ``grpc://``/``grpcs://`` scheme and decide whether TLS is used."""
    use_tls = url.startswith("grpcs://") or ":443" in url
    for scheme in ("grpcs://", "grpc://"):
        if url.startswith(scheme):
            return url[len(scheme):], use_tls
    return url, use_tls


def rpc_error_text(error: grpc.aio.AioRpcError) -> str:
    code = error.code()
    return f"{code.name}: {error.details() or code.value[1]}"


class GrpcExecutor(RequestSender):
    """Sends ``GrpcRequest`` values as unary calls."""

    protocol = "grpc"

    def __init__(self, scripts=None, timeout: float = DEFAULT_TIMEOUT, schemas: Optional[ProtoSchemaCache] = None):
        super().__init__(scripts, timeout)
        self.schemas = schemas if schemas is not None else ProtoSchemaCache()

    def load_schema(self, path: str) -> SchemaInfo:
        """Compile (or fetch from cache) ``path`` and list its services and methods."""
        return self.schemas.load(path).info()

    def clear_schema_cache(self) -> None:
        self.schemas.clear()

    def prepare(self, request: GrpcRequest, resolver: VariableResolver) -> PreparedRequest:
        metadata = {
            key.lower(): value
            for key, value in resolver.resolve_pairs(request.headers, "headers").items()
        }
        for key, value in resolver.resolve_pairs(request.metadata, "metadata").items():
            metadata[key.lower()] = value
        metadata.update(auth_metadata(request.auth, resolver))

        return PreparedRequest(
            url=resolver.resolve(request.url, "URL"),
            method=f"/{request.service_name or ''}/{request.method_name or ''}",
            headers=metadata,
            body=resolver.resolve(request.message, "message"),
        )

    async def transport(self, request: GrpcRequest, prepared: PreparedRequest) -> Response:
        if not request.proto_file:
            response = failure_response(request.id, "No proto file loaded")
            response.body = "Please load a .proto file first"
            return response
        if not request.service_name or not request.method_name:
            response = failure_response(request.id, "No service/method selected")
            response.body = "Please select a service and method"
            return response

        start_time = time.perf_counter()
        try:
            schema = await asyncio.to_thread(self.schemas.load, request.proto_file)
            method = schema.find_method(request.service_name, request.method_name)
            request_message = self.encode_message(schema, method, prepared.body)
        except (SchemaLoadError, LookupError, ValueError) as e:
            message = e.detail if isinstance(e, SchemaLoadError) else str(e)
            return failure_response(request.id, message, elapsed_since(start_time))

        target, use_tls = channel_target(prepared.url)
        if use_tls:
            channel = grpc.aio.secure_channel(target, grpc.ssl_channel_credentials())
        else:
            channel = grpc.aio.insecure_channel(target)

        try:
            async with channel:
                call = channel.unary_unary(prepared.method)
                reply = await call(
                    request_message,
                    metadata=tuple(prepared.headers.items()),
                    timeout=self.timeout,
                )
        except grpc.aio.AioRpcError as e:
            text = rpc_error_text(e)
            return build_response(
                request.id,
                status=e.code().value[0],
                status_text=text,
                body=text,
                elapsed_ms=elapsed_since(start_time),
            )

        try:
            decoded = schema.message_class(method.output_type).FromString(reply)
        except DecodeError as e:
            return failure_response(
                request.id, f"Failed to decode response: {e}", elapsed_since(start_time)
            )

        body = json.dumps(
            json_format.MessageToDict(
                decoded,
                preserving_proto_field_name=True,
                always_print_fields_with_no_presence=True,
            ),
            indent=2,
        )
        return build_response(
            request.id,
            status=200,
            status_text="OK",
            body=body,
            elapsed_ms=elapsed_since(start_time),
        )

    @staticmethod
    def encode_message(schema: ProtoSchema, method, text: str) -> bytes:
        """Validate ``text`` against the method's input type and serialize it."""
        try:
            data = json.loads(text) if text and text.strip() else {}
        except ValueError:
            raise ValueError("Invalid JSON in request message") from None
        if not isinstance(data, dict):
            raise ValueError("Invalid request message: expected a JSON object")

        message = schema.message_class(method.input_type)()
        try:
            json_format.ParseDict(data, message)
        except json_format.ParseError as e:
            raise ValueError(f"Invalid request message: {e}") from None
        return message.SerializeToString()

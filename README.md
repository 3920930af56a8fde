# hormmanage

A small host for the web services of the horm management console. It reads a
YAML server configuration, starts an HTTP listener in a background thread,
routes each request by its URL path to a registered handler, wraps the result
in a JSON envelope, and shuts down gracefully on `SIGINT`, `SIGTERM` or
`SIGUSR2` (where the platform has them).

## Modules

- **`hormmanage.config`** – `parse_config(text)` turns YAML into a `Config`
  (with a `ServerSettings` section and an optional `RegistryConfig`), raising
  `ValueError` on malformed input. `load_config(path)` reads the file (default
  `./server.yaml`), forces `server.idle_time` to 60000 ms, and makes it the
  current configuration, returned afterwards by `current_config()`.
- **`hormmanage.service`** – a `Service` holds handlers registered as `Func`
  entries; the first handler registered under a name wins. A request for
  `/user/info` goes to the handler named `user/info`; when no handler matches,
  the one named `default` is used, otherwise the reply carries error code 11.
  Each handler is called as `handler(ctx, req_header, req_body)`, where `ctx`
  is a `RequestContext` (`msg`, `timeout`, `deadline`, `remaining`,
  `expired`), `req_header` is a `WebReqHeader` and `req_body` the raw body.
  The timeout is the smaller of the configured server timeout and the
  `web-timeout` request header. A handler that raises `ServiceError` answers
  with that error's code and message; any other exception answers with code
  101. `Service.close()` deregisters, waits for active requests, then stops
  the transport.
- **`hormmanage.server`** – `new_server(description, config_path)` loads the
  configuration, sets the `hormmanage` logger level from the first `level`
  found under `log`, adds a web service named `web.<server name>` when
  `web_port` is set, and registers the `Description`'s handlers on it.
  `Server.serve()` starts every service and blocks until a close signal or a
  service failure, then calls `Server.close()`. `is_closing()` reports whether
  shutdown has begun. `new_service(name, protocol, cfg)` builds a single
  service from a `Config`.
- **`hormmanage.web_codec`** – `ServerCodec` reads the `web-version`,
  `web-request-id`, `web-timestamp`, `web-timeout`, `web-userid`,
  `web-workspace-id`, `web-caller`, `web-auth-rand` and `web-sign` headers into
  a `WebReqHeader`. For `GET` the request body is the raw query string; for
  other methods the body is read only when the `Content-Type` is
  `application/json` or `application/xml`. Replies are written as
  `{"code":0,"msg":"success","data":...}`, or `{"code":..,"msg":..}` on error;
  `success_body(body)` and `error_body(error)` produce these envelopes.
- **`hormmanage.web_transport`** – `WebTransport.serve(options)` listens on
  `TransportOptions.address` (or a given listener socket), with TLS when both
  a certificate and a key file are set, and client-certificate verification
  when a CA file is set (`"root"` uses the system roots; see
  `load_ca_certs`). `WebTransport.shutdown()` stops it.
- **`hormmanage.serialization`** – JSON (`JSONSerialization`) and
  pass-through XML (`XMLSerialization`) serializers, chosen by the message's
  serialization type; `register_serializer` and `get_serializer` manage the
  table.
- **`hormmanage.registry`** – the `Registry` interface, a named registry table
  (`register`, `get`), and `parse_host_port(address)`, which resolves a
  network interface name in `nic:port` to that interface's first IPv4 (else
  IPv6) address via `ip_by_nic`.
- **`hormmanage.mail`** – `build_message(...)` builds a raw mail and
  `send_mail(...)` sends it over SMTP to the host in `SMTP_HOST`/`SMTP_PORT`,
  raising `ServiceError` (code 4001) on failure.
- **`hormmanage.head`**, **`hormmanage.message`**, **`hormmanage.transport`** –
  header dataclasses, the per-request `Message`, `ServiceError` with its
  `ErrorCode` values, and the transport `Handler`/`TransportOptions`.

## Configuration

```yaml
env: test
machine: manage-01
machine_id: 1
local_ip: 127.0.0.1

log:
  - level: info

server:
  name: manage
  web_port: 8180
  timeout: 3000            # ms
  close_wait_time: 1000    # ms, capped at 10 s
  max_close_wait_time: 5000
  tls_cert: ""
  tls_key: ""
  ca_cert: ""

register:
  enable: false
```

## Example

```python
from hormmanage.server import Description, new_server
from hormmanage.service import Func


def user_info(ctx, req_header, req_body):
    return {"userid": req_header.userid}


description = Description(name="manage", funcs=[Func(name="user/info", handler=user_info)])
server = new_server(description, "./server.yaml")
server.serve()
```

A request `GET /user/info` with the header `web-userid: 42` answers:

```json
{"code":0,"msg":"success","data":{"userid":42}}
```

## Sending mail

```python
from hormmanage.mail import send_mail

password = "password"
send_mail(
    "alerts@example.com",
    "Alerts",
    password,
    ["ops@example.com"],
    [],
    "Content-Type: text/plain; charset=UTF-8",
    b"Nightly report",
    b"All services are up.",
)
```

## What it does not do

- There is no name-service client. When `register.enable` is true,
  `new_service` looks up a `Registry` under the service name (for example
  `web.manage`) with `hormmanage.registry.get` and raises `RuntimeError` if
  none was stored; put your own `Registry` implementation there with
  `hormmanage.registry.register` before calling `new_server`.
- Only the web service is built from the configuration; `rpc_port` and
  `http_port` are read but start nothing. HTTP/2 is not served.
- There is no command-line entry point; start the server from your own code
  as in the example.

## Version

```python
from hormmanage.version import version

print(version())  # v0.0.1-dev
```
# sfcli

Building blocks for working with PHP and Symfony projects:

- **`sfcli.humanlog`** turns raw PHP, PHP-FPM, Symfony (Monolog) and JSON log
  lines into short, readable, colour-tagged lines.
- **`sfcli.git`** wraps the `git` command: current branch, upstream branch,
  fetch, clone, push, reset, init and commit. Progress output from `git` is
  indented as it streams.
- **`sfcli.http.push`** parses HTTP `Link` headers for preload resources.
- **`sfcli.fcgi`** is a FastCGI client for talking to PHP-FPM directly.
- **`sfcli.envs.routes`** decodes a JSON map of routes, keeping key order.
- **`sfcli.envs.dotenv`** loads a project's `.env` files.

## Installation

```
pip install sfcli
```

It needs Python 3.10 or later. The `test` extra installs pytest for running the
test suite:

```
pip install "sfcli[test]"
```

## Humanising logs

```python
from sfcli.humanlog.handler import Handler, Options

handler = Handler(Options(with_source=True))
print(handler.prettify("[17-Sep-2020 12:20:03] NOTICE: ready to handle connections"))
```

`Handler.prettify` renders the time, a padded level (wrapped in `<warning>` or
`<error>` tags for notices, warnings and errors), optionally the source, the
message and the sorted fields. `Handler.simplify` gives only the message and
its fields. Lines that cannot be parsed come back unchanged. With
`Options(skip_unchanged=True)`, fields equal to those of the previous line are
left out.

`HumanWriter(stream, options)` wraps a text stream; each call to `write`
prettifies the text and writes it followed by a newline.

The parsers in `sfcli.humanlog.records` are also available one by one. Each
returns a `LogLine`, or `None` when the text is not in that format:

- `convert_php_log`
- `convert_php_fpm_log`
- `convert_symfony_log`

`sfcli.humanlog.handler.unmarshal` builds a `LogLine` from a JSON record and
raises `ValueError` when it cannot.

## Git

```python
from sfcli import git

branch = git.get_current_branch(".")
git.fetch(".", "origin", branch)
```

`run_git` runs any git command, capturing output in quiet mode or streaming it
through `GitOutputWriter` otherwise. A command that fails raises `GitError`;
`push` raises `ValueError` when no ref is given.

## Link headers

```python
from sfcli.http.push import parse_link_header, is_remote_resource

for resource in parse_link_header("</app.js>; as=script, </app.css>; nopush"):
    print(resource.uri, resource.params, is_remote_resource(resource.uri))
```

`filter_proxied_headers` keeps only the request headers worth forwarding with
a pushed resource.

## FastCGI

```python
from sfcli.fcgi import dial

with dial("tcp", "127.0.0.1:9000", 5.0) as client:
    response = client.get({"SCRIPT_FILENAME": "/srv/app/public/index.php"})
    print(response.status_code, response.body.read())
```

`FCGIClient` also has `post`, `post_form` and `post_file` (multipart), and
`do`/`request` for lower-level access. Protocol and connection failures raise
`FCGIError`. `dial` accepts the `tcp` and `unix` networks.

## Routes

```python
from sfcli.envs.routes import parse_routes

for route in parse_routes('{"https://example.com/": {"type": "upstream", "upstream": "app", "original_url": "https://{default}/"}}'):
    print(route.key, route.kind, route.upstream, route.original_url)
```

Routes come back in the order their keys appear. A document that is not a
JSON object of route objects raises `ValueError`.

## .env files

`load_dot_env(variables, script_dir)` finds the nearest directory at or above
`script_dir` holding `.env` or `.env.dist`, reads it together with
`.env.local`, `.env.<APP_ENV>` and `.env.<APP_ENV>.local`, and adds the values
to `variables` without overriding keys already present. The names it adds
(except `APP_ENV`) are listed in `SYMFONY_DOTENV_VARS`. `lookup_dot_env` and
`find_dot_env_dir` expose the two steps.

## What it does not do

The package has no command-line program and no web server. It does not build
service variables such as `DATABASE_URL` or `REDIS_URL` from relationships, nor
read `PLATFORM_*` variables on a cloud platform; only route decoding and
`.env` loading are provided under `sfcli.envs`.
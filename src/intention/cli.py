# cli.py
from __future__ import annotations

import json
import sys
import urllib.error
import urllib.request
from pathlib import Path
from typing import Iterable, Iterator, Tuple, Union
from urllib.parse import urljoin

import click

from intention.converter import FeatureParseError
from intention.features import feature_title, sanitize_gherkin, split_features
from intention.repo import InvalidRepoReference, parse_repo_input, repo_url
from intention.settings import HEARTBEAT_SECONDS, PORT
from intention.splice import StepSpliceEngine
from intention.ui.console import Console, get_console, set_console


def iter_sse(lines: Iterable[Union[bytes, str]]) -> Iterator[Tuple[str, str]]:
    """
    Parse Server-Sent-Events lines (bytes or str) into (event, data) pairs.

    Comment lines (heartbeats) are skipped.
    """
    event, data = "message", []
    for raw in lines:
        line = (raw.decode("utf-8") if isinstance(raw, bytes) else raw).rstrip("\r\n")
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].lstrip())
    if data:
        yield event, "\n".join(data)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """Intention: turn a GitHub repository into Gherkin specs and Jest tests."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", default=PORT, type=int, show_default=True, help="Port to listen on")
def serve(host, port):
    """Run the HTTP API server."""
    import uvicorn

    get_console().print_server_started(host, port)
    uvicorn.run("intention.server.main:app", host=host, port=port)


@cli.command()
@click.argument("repo")
@click.option("--branch", default=None, help="Branch override")
def resolve(repo, branch):
    """Show how a repository reference is understood."""
    console = get_console()
    try:
        ref = parse_repo_input(repo).with_branch(branch)
    except InvalidRepoReference as e:
        console.print_error(
            "Invalid repository",
            str(e),
            suggestion="Use one of:\n  owner/repo\n  owner/repo#branch\n  https://github.com/owner/repo/tree/branch",
        )
        sys.exit(1)
    console.print_info(f"Owner: {ref.owner}")
    console.print_info(f"Repo: {ref.repo}")
    console.print_info(f"Branch: {ref.branch}")
    console.print_info(f"URL: {repo_url(ref)}")


def _connection_lost(console: Console, silence_timeout: float) -> None:
    console.print_error(
        "Connection seems lost",
        f"No progress data from the server for {silence_timeout:g}s.",
        suggestion="Check that the server is still running, then retry.",
    )
    sys.exit(1)


@cli.command()
@click.argument("repo")
@click.option("--branch", default=None, help="Branch override")
@click.option("--api", default=f"http://127.0.0.1:{PORT}", show_default=True, help="API base URL")
@click.option("--out", "out_path", default=None, type=click.Path(dir_okay=False), help="Write Gherkin to this file")
@click.option(
    "--silence-timeout",
    default=HEARTBEAT_SECONDS * 3,
    type=float,
    show_default=True,
    help="Seconds without any progress data (heartbeats included) before giving up",
)
@click.pass_context
def generate(ctx, repo, branch, api, out_path, silence_timeout):
    """Start a generation job on the server and follow its progress."""
    console = get_console()
    base_url = api.rstrip("/")

    req_data = json.dumps({"repo": repo, "branch": branch}).encode("utf-8")
    req = urllib.request.Request(
        urljoin(base_url + "/", "api/generate"),
        data=req_data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with urllib.request.urlopen(req) as response:
            job_id = json.loads(response.read().decode("utf-8"))["jobId"]
        console.print_info(f"Job started: {job_id}")

        status, gherkin = "pending", ""
        stream_req = urllib.request.Request(urljoin(base_url + "/", f"api/progress/{job_id}"))
        with urllib.request.urlopen(stream_req, timeout=silence_timeout) as stream:
            for event, data in iter_sse(stream):
                payload = json.loads(data)
                if event == "status":
                    status = payload.get("status", status)
                    console.print_info(f"Status: {status}")
                elif event == "log":
                    message = payload.get("message", "")
                    if "::plan::" in message or "::stage::" in message:
                        console.print_debug(message)
                    else:
                        console.print_info(message)
                elif event == "done":
                    gherkin = payload.get("gherkin", "")
                    break
    except TimeoutError:
        _connection_lost(console, silence_timeout)
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8") if e.fp else ""
        console.print_error(
            "API request failed",
            f"HTTP {e.code} {e.reason}",
            details=[error_body] if error_body else None,
            suggestion=f"Check the API at {base_url} and verify your request.",
        )
        sys.exit(1)
    except urllib.error.URLError as e:
        if isinstance(e.reason, TimeoutError):
            _connection_lost(console, silence_timeout)
        console.print_error(
            "Network error",
            f"Could not connect to {base_url}",
            details=[str(e.reason)],
            suggestion="Start the server first:\n  intention serve",
        )
        sys.exit(1)
    except (json.JSONDecodeError, KeyError) as e:
        console.print_error("Invalid API response", "Could not parse response from API.", details=[str(e)])
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)

    if status != "done" or not gherkin:
        console.print_error("Generation failed", f"Job {job_id} finished with status {status}.")
        sys.exit(1)

    if out_path:
        Path(out_path).write_text(gherkin + "\n", encoding="utf-8")
        console.print_info(f"Wrote {out_path}")
    else:
        click.echo(gherkin)


@cli.command()
@click.argument("feature_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--out", "out_path", default=None, type=click.Path(dir_okay=False), help="Write tests to this file")
@click.pass_context
def tests(ctx, feature_file, out_path):
    """Generate Jest test code for every feature in a .feature file."""
    console = get_console()
    text = sanitize_gherkin(Path(feature_file).read_text(encoding="utf-8"))
    features = split_features(text)
    if not features:
        console.print_error("No features found", f"{feature_file} has no Feature blocks.")
        sys.exit(1)

    blocks = []
    failed = False
    for index, feature in enumerate(features):
        engine = StepSpliceEngine(feature)
        try:
            engine.compile()
        except FeatureParseError as e:
            console.print_feature_failed(index, feature_title(feature), str(e))
            failed = True
            continue
        blocks.append(engine.test_code.strip())

    output = "\n\n".join(blocks) + "\n"
    if out_path:
        Path(out_path).write_text(output, encoding="utf-8")
        console.print_info(f"Wrote {len(blocks)} test block(s) to {out_path}")
    else:
        click.echo(output, nl=False)
    if failed:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

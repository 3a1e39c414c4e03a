import asyncio
import json
import sys
from pathlib import Path

from clientops.clientops_runtime import OpRunner
from clientops.clientops_serialize import deserialize, format_for_path
from clientops.clientops_datatypes import stringify

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def load_tree(file_path: str):
    """Read an operation tree (or a context mapping) from a JSON/YAML file."""
    p = Path(file_path)
    try:
        raw = p.read_bytes()
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    return deserialize(raw, fmt=format_for_path(str(p)) or "json")

def print_result(result):
    # Print side effects (from `console`)
    for effect in result.side_effects:
        if effect.get('topics', [None])[0] == 'console':
            print(stringify(effect.get('message', '')))
    if result.value is not None:
        print(stringify(result.value))

async def run_ops_file(file_path: str, context_path: str | None = None):
    """Run an operation file non-interactively and exit with appropriate status."""
    runner = OpRunner()
    op = load_tree(file_path)
    context = load_tree(context_path) if context_path else {}
    try:
        result = await runner.handle_op(op, context)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            raise SystemExit(1)
        # Let timers and channel callbacks scheduled by the tree settle
        await runner.host.wait_idle()
        print_result(result)
    finally:
        await runner.shutdown()

async def main():
    """Run an operation file when provided, otherwise start the interactive REPL."""
    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    if args:
        await run_ops_file(args[0], args[1] if len(args) > 1 else None)
        return

    print("clientops REPL v0.1")
    print("Enter one JSON operation per line. Type 'exit' or press Ctrl+D to quit.")

    runner = OpRunner()

    # REPL Loop
    try:
        while True:
            try:
                raw = await ainput(">> ")
                if raw == "":
                    raise EOFError
                line = raw.strip()

                if not line:
                    continue
                if line == "exit":
                    break

                try:
                    op = json.loads(line)
                except ValueError as e:
                    print(f"Error: invalid JSON: {e}", file=sys.stderr)
                    continue

                result = await runner.handle_op(op)

                if result.status == 'error':
                    print(result.format_error(), file=sys.stderr)
                    continue

                print_result(result)

            except EOFError:
                print("\nExiting.")
                break
            except Exception as e:
                print(f"Error: {e}", file=sys.stderr)
    finally:
        await runner.shutdown()

def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")

if __name__ == "__main__":
    cli()

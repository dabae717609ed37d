"""
load.py: async load generator for a running shorty server

Usage:
  python load.py write  --base http://127.0.0.1:8080 --count 2000 --concurrency 100 --out codes.jsonl
  python load.py read   --base http://127.0.0.1:8080 --in codes.jsonl --count 15000 --concurrency 200
  python load.py delete --base http://127.0.0.1:8080 --count 500 --concurrency 50

`write` and `read` use one shared client (one session cookie). `delete`
shortens `count` fresh URLs in its own session, then deletes them in batches
of `--batch` through DELETE /api/user/urls.
"""
import argparse
import asyncio
import json
import random
import string
import time
from datetime import datetime, timezone

import httpx


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _rand_url(idx: int) -> str:
    host = random.choice(["example", "sample", "demo", "test"]) + "." + random.choice(["com", "net", "org", "io"])
    path = "".join(random.choice(string.ascii_letters + string.digits) for _ in range(8))
    return f"https://{host}/{path}?q={idx}"


def _code(short_url: str) -> str:
    return short_url.rsplit("/", 1)[1]


def _load_codes(path):
    codes = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                codes.append(json.loads(line)["code"])
    return codes


async def _fan_out(count: int, concurrency: int, op):
    """Run op(i) for i in range(count) with at most `concurrency` in flight; return successes."""
    sem = asyncio.Semaphore(concurrency)
    success = 0

    async def _task(i):
        nonlocal success
        async with sem:
            if await op(i):
                success += 1

    await asyncio.gather(*(_task(i) for i in range(count)))
    return success


async def _shorten(client: httpx.AsyncClient, base: str, url: str):
    r = await client.post(f"{base}/api/shorten", json={"url": url}, timeout=10)
    if r.status_code not in (201, 409):
        r.raise_for_status()
    return _code(r.json()["result"])


async def run_write(args, client):
    with open(args.out, "w", encoding="utf-8") as out_f:

        async def op(i):
            url = _rand_url(i)
            try:
                code = await _shorten(client, args.base, url)
            except httpx.HTTPError:
                return False
            out_f.write(json.dumps({"code": code, "url": url}) + "\n")
            return True

        return await _fan_out(args.count, args.concurrency, op)


async def run_read(args, client):
    codes = _load_codes(args.codes_file)
    if not codes:
        raise SystemExit(f"No codes found in {args.codes_file}. Run `load.py write` first.")

    async def op(i):
        try:
            r = await client.get(f"{args.base}/{random.choice(codes)}", follow_redirects=False, timeout=10)
        except httpx.HTTPError:
            return False
        return r.status_code == 307

    return await _fan_out(args.count, args.concurrency, op)


async def run_delete(args, client):
    # the first request establishes the session cookie the rest reuse
    codes = [await _shorten(client, args.base, _rand_url(-1))]

    async def create(i):
        try:
            codes.append(await _shorten(client, args.base, _rand_url(i)))
        except httpx.HTTPError:
            return False
        return True

    await _fan_out(args.count, args.concurrency, create)
    batches = [codes[i:i + args.batch] for i in range(0, len(codes), args.batch)]

    async def op(i):
        try:
            r = await client.request("DELETE", f"{args.base}/api/user/urls", json=batches[i], timeout=10)
        except httpx.HTTPError:
            return False
        return r.status_code == 202

    return await _fan_out(len(batches), args.concurrency, op)


COMMANDS = {"write": run_write, "read": run_read, "delete": run_delete}


async def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("--base", default="http://127.0.0.1:8080")
    parser.add_argument("--count", type=int, default=2000)
    parser.add_argument("--concurrency", type=int, default=100)
    parser.add_argument("--out", default="codes.jsonl")
    parser.add_argument("--in", dest="codes_file", default="codes.jsonl")
    parser.add_argument("--batch", type=int, default=50)
    args = parser.parse_args()
    args.base = args.base.rstrip("/")

    start_iso = _now_iso()
    t0 = time.perf_counter()
    limit = httpx.Limits(max_connections=args.concurrency, max_keepalive_connections=args.concurrency)
    async with httpx.AsyncClient(limits=limit) as client:
        success = await COMMANDS[args.command](args, client)
    dt = time.perf_counter() - t0

    print(f"START: {start_iso}")
    print(f"END:   {_now_iso()}")
    print(f"TOTAL: {dt:.3f} s")
    print(f"OPS:   {args.command} ok={success}")
    if dt > 0:
        print(f"RATE:  {success/dt:.1f} ops/s")


if __name__ == "__main__":
    asyncio.run(main())

"""Minimal demonstration of the SnapBot chat engine."""

import asyncio

from snapbot_core import build_chat_engine


async def main() -> None:
    engine = build_chat_engine()
    await engine.start()
    question = "用三句话解释一下光合作用"
    reply = await engine.send_message(question)
    await engine.save_history()
    print("User:", question)
    if engine.error is not None:
        print("Error:", engine.error.message)
    elif reply is not None:
        print("SnapBot:", reply.content)


if __name__ == "__main__":
    asyncio.run(main())

"""Minimal demonstration of a dual-channel turn.

Reads connection settings from config.yaml / environment variables
(MAIN_API_KEY, AUXILIARY_ENABLED, ...).
"""

import asyncio

from chat_stream_core import ChatStreamService


async def main() -> None:
    service = ChatStreamService.from_settings()
    service.subscribe(lambda r: print("Auxiliary:", r.status, r.text or r.error))

    question = "帮我把包裹寄到北京市朝阳区，顺便介绍一下那里的天气"
    handles = await service.submit_turn(question)
    primary, auxiliary = await service.wait_turn(handles)

    print("User:", question)
    print("Assistant:", primary.text if primary.ok else f"[{primary.error_code}] {primary.error}")
    if service.processors is not None:
        for outcome in service.processors.last_results:
            print("Processor:", outcome.processor, outcome.data)
    service.teardown_all()


if __name__ == "__main__":
    asyncio.run(main())

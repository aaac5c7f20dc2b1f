import argparse
import asyncio
import logging

from orbit_bridge import GenerationOptions, Provider, ProviderDispatcher, Settings, SpecialMode

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


async def chat_once(provider: Provider, stream: bool) -> None:
    settings = Settings.from_env()
    history = [
        {"role": "user", "parts": [{"text": "My name is Dana."}]},
        {"role": "model", "parts": [{"text": "Nice to meet you, Dana!"}]},
    ]

    def on_delta(text, error):
        if error is not None:
            print(f"\n[stream failed: {error}]")
        elif text is None:
            print()
        else:
            print(text, end="", flush=True)

    async with ProviderDispatcher.from_settings(settings) as dispatcher:
        result = await dispatcher.dispatch(
            provider,
            "What's my name?",
            history,
            system_prompt="You are a helpful assistant.",
            mode=SpecialMode.STREAM if stream else SpecialMode.NONE,
            stream_callback=on_delta if stream else None,
            options=GenerationOptions(max_output_tokens_override=500, use_tools=False),
        )

    if not stream:
        print(result.content)
    logger.info("%s/%s used %d tokens", result.provider, result.model, result.usage.total_tokens)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        default=Provider.HOSTED.value,
    )
    parser.add_argument("--stream", action="store_true")
    args = parser.parse_args()

    asyncio.run(chat_once(Provider(args.provider), args.stream))

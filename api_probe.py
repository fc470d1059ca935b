"""
Check that the configured LLM keys work.

Usage: python api_probe.py [deepseek|zhipu ...]
"""
import sys
import time

from llm_client import load_llm_config, probe_endpoint


def main(argv=None) -> int:
    names = (argv if argv is not None else sys.argv[1:]) or ["deepseek", "zhipu"]
    config = load_llm_config()
    failures = 0

    for name in names:
        provider = config.provider(name)
        print(f"🚀 Testing {provider.name}")
        print(f"📍 URL:   {provider.url}")
        print(f"🤖 Model: {provider.model}")
        print(f"🔑 Key:   {'Present' if provider.api_key else 'Missing'}")

        start_time = time.monotonic()
        try:
            reply = probe_endpoint(provider)
            print(f"✅ Success ({(time.monotonic() - start_time) * 1000:.0f} ms): {reply[:80]}")
        except Exception as e:
            failures += 1
            print(f"❌ Error: {e}")
        print()

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())

"""Business-logic layer.

The rule engine lives in:
- rule_compiler.py (tag record -> compiled matcher)
- rule_cache.py / device_directory.py (snapshot caches over the stores)
- classifier.py (first-match classification of inbound messages)
- hysteresis.py (recovery tags for threshold tags)

The *_service.py modules are the HTTP-facing callers; device_checker.py is the background
health-check loop.
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.

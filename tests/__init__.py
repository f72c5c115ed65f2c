"""
Foreman Test Suite
==================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/           → foreman.core (config, models, exceptions)
    ├── test_orchestration/  → foreman.orchestration (bus, resolver, engine, orchestrator)
    ├── test_integrations/   → foreman.integrations (LLM providers, command runners, sandbox)
    ├── test_capabilities/   → foreman.capabilities (files, datasets, environment)
    ├── test_facade.py       → End-to-end sessions through Foreman
    └── conftest.py          → Shared pytest fixtures

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_orchestration/ # Run only orchestration tests
"""

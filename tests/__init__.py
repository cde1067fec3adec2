"""
Test Package
============

Unit and integration tests for app-runner.

Test organization:
    - test_locking.py: Resource lock naming, exclusion and abandonment
    - test_session.py: SessionManager lifecycle and rollback
    - test_factory.py: Platform registry
    - test_providers.py: Provider behavior with patched tools and HTTP
    - test_config.py: Settings loading
    - test_cli.py: Command-line interface
    - test_security.py: Credential masking

Run tests with:
    pytest tests/ -v
    pytest tests/ -v -m "not slow"
"""

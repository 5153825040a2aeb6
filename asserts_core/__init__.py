"""
Asserts Core Package
====================
Platform-trust primitives shared by every component that makes a trust
decision (store clients, policy consumers, device provisioning).

Provides:
- Signed assertion documents and their canonical text encoding
- Static assertion type registry
- Trust database with revision and prerequisite enforcement
- Chain-of-trust verification against configured root keys
- Device registration client (serial assertion acquisition)
"""

__version__ = "0.4.0"

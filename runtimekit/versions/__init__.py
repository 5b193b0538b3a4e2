"""
Version management for runtimekit.

Modules:
    tokens: Version identifiers and token classification
    catalog: Upstream release catalogs
    installer: Archive install pipeline
    resolver: Precedence-based version selection
    activation: Current-version link management
    migration: Import from nvm, n, rustup, pyenv and gvm
    cleanup: Removal of leftovers from interrupted operations
"""

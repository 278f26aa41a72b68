"""Business logic services layer.

Core services for shiori:
- descriptor_store: Installed extension records
- repository: Content graph (manga, chapters, pages, updates)
- history_service: Reading progress
- source_service: Browsing sources through their capabilities
- sync_service: Update synchronizer
- relay: Hotlink-bypass relay
- index_service: Extension repository index generation
"""

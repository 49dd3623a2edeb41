"""
Services Module

Domain logic behind the HTTP routers. Every service receives the persistence
handle explicitly:
- user_admin: admin user management (list / create / update / cascading delete)
- code_admin: invite and access code lifecycle and redemption
- code_generator: shared code generation
- quota: quota periods, enforcement and the token usage ledger
- database_reset: in-process reset + reseed
- chat_view: chat screen presentation logic
"""

# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for one entity:
#
#   post_service  — CRUD, publication flags, featured swap, post images
#   user_service  — profiles, team ordering, login check, avatars
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.

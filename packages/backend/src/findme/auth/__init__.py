"""Authentication for the websocket upgrade.

Learn: Tokens are issued by the account service; this package only
verifies them. The token's `sub` claim is the user id.
"""

"""
Bot-authored notice texts. Markdown-style; sent through markup.format_text_html.
"""

UNAUTHORIZED = "🚫 **Unauthorized!**"

NO_PERMISSION = "Sorry, you do not have permission to run this command."
USAGE = "Invalid command format.\nUsage: `/{command} <user_id>`\n`<user_id>` must be a number."
BANNED = "✅ User `{user_id}` has been added to the blacklist."
BAN_FAILED = "❌ Failed to add user `{user_id}` to the blacklist, please check the logs."
UNBANNED = "✅ User `{user_id}` has been removed from the blacklist."
UNBAN_FAILED = "❌ Failed to remove user `{user_id}` from the blacklist, please check the logs."
UNKNOWN_COMMAND = "Sorry, unknown command: /{command}"
COMMAND_ERROR = "An internal error occurred while processing your command, please try again later."

SOURCE_UNAVAILABLE = (
    "⚠️ Cannot forward the reply: the original message source was not found.\n"
    "Possible reasons:\n"
    "- The original message is older than the {days} day retention window.\n"
    "- The message record has been cleaned up.\n"
    "- An internal system error."
)
REPLY_FAILED = "❌ Error forwarding the reply to user `{chat_id}`: {error}"
RELAY_FAILED = "Sorry, there was a problem forwarding your message, please try again later."

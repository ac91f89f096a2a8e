import discord
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .config_manager import ConfigManager
from .data_manager import DataManager
from .dispatcher import QuizDispatcher
from .errors import TransportError
from .gateway import MessagingGateway
from .ledger import NameLedger, ScoreLedger
from .session_store import SessionStore

logger = logging.getLogger(__name__)

# Discord limits
MAX_MESSAGE_LENGTH = 2000
MAX_BUTTON_LABEL_LENGTH = 80
MAX_BUTTONS_PER_VIEW = 25

STALE_ANSWER_MESSAGE = "That question is no longer active."

AnswerHandler = Callable[[int, Optional[str], str], Awaitable[None]]


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split text into chunks no longer than limit.

    Chunks break at line boundaries where possible; a single line longer
    than the limit is cut into fixed-size pieces.
    """
    if len(text) <= limit:
        return [text]

    chunks = []
    current = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
            current = ""
            chunks.append(line[:limit])
            line = line[limit:]

        if not current:
            current = line
        elif len(current) + 1 + len(line) <= limit:
            current = f"{current}\n{line}"
        else:
            chunks.append(current)
            current = line

    if current:
        chunks.append(current)
    return chunks


class AnswerButton(discord.ui.Button):
    """Quick-reply button that submits one option as the chat's answer."""

    def __init__(self, answer: str):
        super().__init__(
            label=answer[:MAX_BUTTON_LABEL_LENGTH] or "…",
            style=discord.ButtonStyle.primary
        )
        self.answer = answer

    async def callback(self, interaction: discord.Interaction):
        view = self.view
        if view.is_finished():
            # Buttons of an earlier question, the chat has moved on
            try:
                await interaction.response.send_message(STALE_ANSWER_MESSAGE, ephemeral=True)
            except discord.HTTPException as e:
                logger.warning(f"Failed to reject stale answer in channel {interaction.channel_id}: {e}")
            return

        # One-time keyboard: the first click disables every option
        view.disable_buttons()
        view.stop()

        try:
            await interaction.response.edit_message(view=view)
        except discord.HTTPException as e:
            logger.warning(f"Failed to disable answer buttons in channel {interaction.channel_id}: {e}")

        await view.answer_handler(interaction.channel_id, interaction.user.display_name, self.answer)


class AnswerView(discord.ui.View):
    """Set of answer buttons attached to a question message."""

    def __init__(self, options: Sequence[str], answer_handler: AnswerHandler):
        super().__init__(timeout=None)
        self.answer_handler = answer_handler
        self.question_message: Optional[discord.Message] = None

        if len(options) > MAX_BUTTONS_PER_VIEW:
            logger.warning(f"Question has {len(options)} options, only the first "
                           f"{MAX_BUTTONS_PER_VIEW} can be shown as buttons")
        for option in options[:MAX_BUTTONS_PER_VIEW]:
            self.add_item(AnswerButton(option))

    def disable_buttons(self) -> None:
        for item in self.children:
            item.disabled = True

    async def retire(self) -> None:
        """Stop accepting clicks and grey out the buttons on the question message."""
        if self.is_finished():
            return
        self.disable_buttons()
        self.stop()

        if self.question_message is None:
            return
        try:
            await self.question_message.edit(view=self)
        except discord.HTTPException as e:
            logger.warning(f"Failed to disable stale answer buttons: {e}")


class DiscordGateway(MessagingGateway):
    """Delivers quiz responses to Discord channels."""

    def __init__(self, client: discord.Client, answer_handler: AnswerHandler):
        """
        Args:
            client: Connected Discord client used to resolve channels
            answer_handler: Called when a user clicks an answer button
        """
        self.client = client
        self.answer_handler = answer_handler
        # Only the latest question in a channel accepts clicks
        self._active_views: Dict[int, AnswerView] = {}

    async def _resolve_channel(self, chat_id: int):
        channel = self.client.get_channel(chat_id)
        if channel is None:
            channel = await self.client.fetch_channel(chat_id)
        return channel

    async def _send(self, chat_id: int, **kwargs) -> discord.Message:
        try:
            channel = await self._resolve_channel(chat_id)
            return await channel.send(**kwargs)
        except discord.DiscordException as e:
            raise TransportError(f"Failed to send to channel {chat_id}: {e}") from e

    async def send_text(self, chat_id: int, text: str) -> None:
        for chunk in split_message(text):
            await self._send(chat_id, content=chunk)

    async def send_image(self, chat_id: int, image_url: str) -> None:
        embed = discord.Embed()
        embed.set_image(url=image_url)
        await self._send(chat_id, embed=embed)

    async def send_choices(self, chat_id: int, text: str, options: Sequence[str]) -> None:
        await self.clear_choices(chat_id)

        view = AnswerView(options, self.answer_handler)
        view.question_message = await self._send(chat_id, content=text, view=view)
        self._active_views[chat_id] = view

    async def clear_choices(self, chat_id: int) -> None:
        view = self._active_views.pop(chat_id, None)
        if view is not None:
            await view.retire()


class QuizBot(discord.Client):
    """Discord client that runs the art quiz in any channel it can read."""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True
        intents.messages = True
        # Privileged intent, enable it in the Discord Developer Portal
        intents.message_content = True

        super().__init__(intents=intents)

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.data_manager: Optional[DataManager] = None
        self.dispatcher: Optional[QuizDispatcher] = None
        self._ledgers_saved = False

    async def setup_hook(self):
        """Build quiz components, restore ledgers and preload questions."""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            self.config_manager.apply_config(self.app_config)
            logger.info(self.config_manager.get_settings_summary())

            self.data_manager = DataManager(self.config_manager.get_questions_file())

            score_ledger = ScoreLedger(
                self.config_manager.get_scores_file(),
                autosave=self.config_manager.get_autosave()
            )
            name_ledger = NameLedger(
                self.config_manager.get_names_file(),
                autosave=self.config_manager.get_autosave()
            )
            score_ledger.load_snapshot()
            name_ledger.load_snapshot()

            self.data_manager.get_questions()

            self.dispatcher = QuizDispatcher(
                data_manager=self.data_manager,
                session_store=SessionStore(),
                score_ledger=score_ledger,
                name_ledger=name_ledger,
                gateway=DiscordGateway(self, self.handle_answer),
                config_manager=self.config_manager
            )

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        print(f"🤖 {self.user} is Ready and Online!")

    async def on_message(self, message: discord.Message):
        """Forward text messages from users to the quiz dispatcher."""
        if message.author.bot:
            return
        if not message.content:
            return
        if self.dispatcher is None:
            logger.warning("Message received before setup completed, ignoring")
            return

        await self.dispatcher.handle_message(
            message.channel.id,
            message.author.display_name,
            message.content
        )

    async def handle_answer(self, chat_id: int, sender_name: Optional[str], text: str) -> None:
        """Route an answer button click like a typed answer."""
        if self.dispatcher is None:
            return
        await self.dispatcher.handle_message(chat_id, sender_name, text)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        """Flush ledgers to disk, then disconnect."""
        if self.dispatcher is not None and not self._ledgers_saved:
            logger.info("Saving ledgers before shutdown...")
            self._ledgers_saved = self.dispatcher.save_ledgers()
        await super().close()


async def run_bot(token, config=None):
    """Run the bot with proper error handling"""
    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Art Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.PrivilegedIntentsRequired:
        logger.error("Message content intent is not enabled for this bot in the Developer Portal")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()

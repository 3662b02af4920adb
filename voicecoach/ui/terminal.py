"""
Rich-based terminal user interface.

Presents the coaching session: mode and reference sentence, recording
status, transcripts, pronunciation scores with per-word detail, replies and
service readiness.
"""

from typing import Dict, Optional
import asyncio
import time

try:
    from rich.console import Console
    from rich.panel import Panel
    from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
    from rich.text import Text
    from rich.table import Table
    from rich.prompt import Prompt
    from rich import box
    RICH_AVAILABLE = True
except ImportError:
    RICH_AVAILABLE = False
    Console = None

from ..dispatch import AssessmentMode
from ..feedback import AssessmentPayload, FeedbackTier, SpontaneousPayload, TranscriptPayload, score_tier
from ..providers.base import ErrorKind, ProviderResult

TIER_STYLES = {
    FeedbackTier.POSITIVE: "green",
    FeedbackTier.MODERATE: "yellow",
    FeedbackTier.NEEDS_IMPROVEMENT: "red",
}

# Commands accepted at the idle prompt
COMMAND_RECORD = "record"
COMMAND_MODE = "mode"
COMMAND_REFERENCE = "reference"
COMMAND_QUIT = "quit"

# Commands accepted while recording
COMMAND_STOP = "stop"
COMMAND_PAUSE = "pause"

_COMMAND_KEYS = {
    "": COMMAND_RECORD,
    "m": COMMAND_MODE,
    "r": COMMAND_REFERENCE,
    "q": COMMAND_QUIT,
}

_RECORDING_KEYS = {
    "": COMMAND_STOP,
    "p": COMMAND_PAUSE,
}


def _format_score(score: Optional[float]) -> Text:
    if score is None:
        return Text("N/A", style="dim")
    return Text(f"{score:.0f}", style=TIER_STYLES[score_tier(score)])


class TerminalUI:
    """
    Rich-based terminal interface for the coaching session.

    Blocking ``input()`` calls run in the default executor so the event
    loop keeps servicing the recorder while the user is speaking.
    """

    def __init__(self, console: Optional[Console] = None):
        """Initialize the terminal UI."""
        if not RICH_AVAILABLE:
            raise RuntimeError("Rich library not available. Install with: pip install rich")

        self.console = console or Console()
        self._recording_start_time: Optional[float] = None
        self._progress_context = None
        self._current_task = None

    async def _read_line(self, prompt: str = "") -> Optional[str]:
        """Read one line without blocking the loop; None on EOF or Ctrl+C."""
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, input, prompt)
        except (KeyboardInterrupt, EOFError):
            return None

    def show_welcome(self, mode: AssessmentMode, reference_text: Optional[str]) -> None:
        """Show the banner and key bindings."""
        welcome_text = Text()
        welcome_text.append("🎙️  Voice Coach", style="bold magenta")
        welcome_text.append("\n\nDictation and pronunciation practice\n")

        self.console.print(Panel(
            welcome_text,
            title="Welcome",
            title_align="center",
            border_style="cyan",
            padding=(1, 2)
        ))
        self.console.print("\n📋 Instructions:")
        self.console.print("  • Press [bold green]Enter[/bold green] to start recording, Enter again to stop")
        self.console.print("  • While recording, type [bold]p[/bold] to pause or resume")
        self.console.print("  • Type [bold]m[/bold] to switch between dictation and pronunciation")
        self.console.print("  • Type [bold]r[/bold] to set the sentence to practise")
        self.console.print("  • Type [bold]q[/bold] to quit")
        self.console.print()
        self.show_mode(mode, reference_text)

    def show_mode(self, mode: AssessmentMode, reference_text: Optional[str]) -> None:
        line = Text("Mode: ", style="dim")
        line.append(mode.value, style="bold cyan")
        if mode.requires_reference_text:
            line.append("   Reference: ", style="dim")
            if reference_text:
                line.append(f"“{reference_text}”", style="white")
            else:
                line.append("not set (type r)", style="yellow")
        self.console.print(line)

    async def prompt_command(self) -> str:
        """
        Wait for the next command at the idle prompt.

        Returns:
            One of the COMMAND_* constants. Unknown input is reported and
            asked for again.
        """
        while True:
            line = await self._read_line("[Enter] record  [m] mode  [r] reference  [q] quit > ")
            if line is None:
                return COMMAND_QUIT

            command = _COMMAND_KEYS.get(line.strip().lower())
            if command:
                return command
            self.console.print(f"❌ Unknown command: {line.strip()!r}", style="red")

    async def prompt_reference_text(self, current: Optional[str] = None) -> Optional[str]:
        """Ask for the sentence to practise. An empty answer keeps the current one."""
        try:
            loop = asyncio.get_running_loop()
            answer = await loop.run_in_executor(
                None,
                lambda: Prompt.ask("Sentence to practise", default=current or "", console=self.console)
            )
        except (KeyboardInterrupt, EOFError):
            return current
        return answer.strip() or current

    def show_recording_status(self) -> None:
        """Display the recording indicator."""
        self._recording_start_time = time.time()

        self.console.print(Panel(
            Text("🔴 RECORDING", style="bold red") + Text("\n\nSpeak now... Press Enter to stop, p to pause", style="white"),
            title="Recording Audio",
            title_align="center",
            border_style="red",
            padding=(1, 2)
        ))

    async def prompt_recording_command(self, paused: bool = False) -> str:
        """
        Wait for a command while a recording is open.

        Returns:
            COMMAND_STOP for Enter, EOF or Ctrl+C; COMMAND_PAUSE for ``p``,
            which the caller treats as pause or resume.
        """
        while True:
            line = await self._read_line("[p] resume  [Enter] stop > " if paused else "")
            command = COMMAND_STOP if line is None else _RECORDING_KEYS.get(line.strip().lower())

            if command == COMMAND_STOP:
                self._show_stopped()
                return command
            if command:
                return command
            self.console.print(f"❌ Unknown command: {line.strip()!r}", style="red")

    def show_paused(self, paused: bool) -> None:
        if paused:
            self.console.print("⏸️  Paused. Type p to resume or press Enter to stop.", style="yellow")
        else:
            self.console.print("🔴 Recording resumed", style="bold red")

    def _show_stopped(self) -> None:
        if self._recording_start_time:
            duration = time.time() - self._recording_start_time
            self.console.print(f"⏹️  Recording stopped ({duration:.1f}s)")
        else:
            self.console.print("⏹️  Recording stopped")
        self._recording_start_time = None
        self.console.print()

    def show_progress(self, message: str) -> None:
        """Display or update the spinner with a message."""
        if not self._progress_context:
            self._progress_context = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=self.console,
                transient=True
            )
            self._progress_context.start()
            self._current_task = self._progress_context.add_task(f"🤖 {message}", total=None)
        elif self._current_task is not None:
            self._progress_context.update(self._current_task, description=f"🤖 {message}")

    def stop_progress(self) -> None:
        """Stop the current progress indicator."""
        if self._progress_context:
            self._progress_context.stop()
            self._progress_context = None
            self._current_task = None

    def display_transcript(self, transcript: TranscriptPayload) -> None:
        self.stop_progress()

        subtitle_parts = [f"{transcript.word_count} words"]
        if transcript.language:
            subtitle_parts.append(transcript.language)
        if transcript.duration:
            subtitle_parts.append(f"{transcript.duration:.1f}s")

        self.console.print(Panel(
            Text(transcript.text or "(no speech detected)", style="white"),
            title="📝 Transcript",
            subtitle=" · ".join(subtitle_parts),
            border_style="cyan",
            padding=(1, 2)
        ))

    def display_assessment(self, assessment: AssessmentPayload, reference_text: Optional[str] = None) -> None:
        """Show the score table, the weakest words and the feedback line."""
        self.stop_progress()

        table = Table(
            title="Pronunciation Scores",
            title_style="bold cyan",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold white"
        )
        table.add_column("Metric", style="magenta", width=16)
        table.add_column("Score", justify="right", width=8)

        for label, score in (
            ("Overall", assessment.overall_score),
            ("Pronunciation", assessment.pronunciation_score),
            ("Fluency", assessment.fluency_score),
            ("Rhythm", assessment.rhythm_score),
            ("Intonation", assessment.intonation_score),
        ):
            if score is not None or label == "Overall":
                table.add_row(label, _format_score(score))

        if reference_text:
            self.console.print(Text(f"Reference: “{reference_text}”", style="dim"))
        self.console.print(table)

        if assessment.word_scores:
            words = Text()
            for word in assessment.word_scores:
                style = TIER_STYLES[score_tier(word.score)] if word.score is not None else "dim"
                words.append(word.word, style=style)
                words.append(" ")
            self.console.print(Panel(words, title="Words", border_style="dim"))

        if assessment.feedback_summary:
            self.console.print(f"💬 {assessment.feedback_summary}")
        self.console.print()

    def display_spontaneous(self, assessment: SpontaneousPayload, question: Optional[str] = None) -> None:
        """Show the scores for an open answer and what was heard."""
        self.stop_progress()

        table = Table(
            title="Speaking Scores",
            title_style="bold cyan",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold white"
        )
        table.add_column("Metric", style="magenta", width=18)
        table.add_column("Score", justify="right", width=8)

        for label, score in (
            ("Overall", assessment.overall_score),
            ("Task achievement", assessment.task_achievement_score),
            ("Pronunciation", assessment.pronunciation_score),
            ("Fluency", assessment.fluency_score),
            ("Grammar", assessment.grammar_score),
            ("Vocabulary", assessment.vocabulary_score),
            ("Coherence", assessment.coherence_score),
        ):
            if score is not None or label == "Overall":
                table.add_row(label, _format_score(score))

        if question:
            self.console.print(Text(f"Question: “{question}”", style="dim"))
        self.console.print(table)

        if assessment.transcription:
            self.console.print(Panel(Text(assessment.transcription), title="Heard", border_style="dim"))
        if assessment.feedback_summary:
            self.console.print(f"💬 {assessment.feedback_summary}")
        self.console.print()

    def display_reply(self, reply_text: str, model: Optional[str] = None) -> None:
        self.stop_progress()
        self.console.print(Panel(
            Text(reply_text, style="white"),
            title="🤖 Reply",
            subtitle=model or "",
            border_style="magenta",
            padding=(1, 2)
        ))

    def show_result_error(self, result: ProviderResult, stage: str) -> None:
        """
        Display a failed provider result.

        Input validation problems get a yellow hint; provider failures get
        the error panel with retry guidance.
        """
        self.stop_progress()

        if result.is_validation_error:
            self.console.print(f"⚠️  {stage}: {result.user_message}", style="yellow")
            return

        guidance = ""
        if result.retryable:
            guidance = "\n\n💡 Try again - the service might be temporarily slow or unreachable."
        elif result.error_kind == ErrorKind.UNAUTHORIZED:
            guidance = "\n\n💡 Check the API key in your environment or .env file."

        self.console.print(Panel(
            Text(f"❌ {stage} failed: {result.user_message}{guidance}", style="red"),
            title="Error",
            title_align="center",
            border_style="red",
            padding=(1, 2)
        ))

    def show_error(self, error) -> None:
        """
        Display an error message with Rich formatting.

        Args:
            error: Exception or message to display
        """
        self.stop_progress()

        error_message = str(error)

        # Provide helpful guidance for common errors
        if "permission" in error_message.lower() or "microphone" in error_message.lower():
            guidance = "\n\n💡 Try checking your microphone permissions in System Settings."
        elif "pyaudio" in error_message.lower():
            guidance = "\n\n💡 Install the audio extra: pip install voice-coach[audio]"
        else:
            guidance = ""

        self.console.print(Panel(
            Text(f"❌ {error_message}{guidance}", style="red"),
            title="Error",
            title_align="center",
            border_style="red",
            padding=(1, 2)
        ))

    def show_success(self, message: str) -> None:
        self.stop_progress()
        self.console.print(f"✅ {message}", style="green")

    def show_discarded(self) -> None:
        self.stop_progress()
        self.console.print("⏭️  Result arrived after a newer recording started; ignored.", style="dim")

    def show_service_status(self, status: Dict[str, Dict[str, bool]]) -> None:
        """Render the readiness table returned by ``VoiceCoach.check_service_status``."""
        table = Table(
            title="Service Status",
            title_style="bold cyan",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold white"
        )
        table.add_column("Component", style="magenta")
        table.add_column("Ready", justify="center")

        for name, ready in status.get("services", {}).items():
            table.add_row(name.replace("_", " "), "✅" if ready else "❌")

        keys = Table(
            title="API Keys",
            title_style="bold cyan",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold white"
        )
        keys.add_column("Provider", style="magenta")
        keys.add_column("Configured", justify="center")

        for name, present in status.get("api_keys", {}).items():
            keys.add_row(name, "✅" if present else "❌")

        self.console.print(table)
        self.console.print(keys)

    def show_devices(self, devices) -> None:
        table = Table(title="Input Devices", box=box.ROUNDED, header_style="bold white")
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Name", style="white")
        table.add_column("Channels", justify="right")
        table.add_column("Rate", justify="right")

        for device in devices:
            name = device["name"] + (" [green](default)[/green]" if device.get("is_default") else "")
            table.add_row(str(device["index"]), name, str(device["channels"]), str(device["sample_rate"]))

        self.console.print(table)

    def show_voices(self, voices) -> None:
        table = Table(title="Voices", box=box.ROUNDED, header_style="bold white")
        table.add_column("Name", style="white")
        table.add_column("Voice ID", style="cyan")
        table.add_column("Category", style="dim")

        for voice in voices:
            table.add_row(voice.name, voice.voice_id, voice.category or "")

        self.console.print(table)

    def show_models(self, models) -> None:
        table = Table(title="Models", box=box.ROUNDED, header_style="bold white")
        table.add_column("Model ID", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("TTS", justify="center")

        for model in models:
            table.add_row(model.model_id, model.name, "✅" if model.can_do_text_to_speech else "❌")

        self.console.print(table)

    def show_voicing_account(self, account) -> None:
        tier = f" ({account.tier})" if account.tier else ""
        self.console.print(
            f"🔊 Characters used: {account.character_count:,} / {account.character_limit:,}"
            f" ({account.characters_remaining:,} left){tier}"
        )

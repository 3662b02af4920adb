"""
Main application entry point for Voice Coach.

This module provides the command-line interface and runs the interactive
coaching loop: record, transcribe or score, reply, and optionally speak.
"""

from pathlib import Path
from typing import Optional
import asyncio
import logging
import sys

import click
import pyperclip
from dotenv import load_dotenv
from rich.logging import RichHandler

from . import __version__
from .app import TurnOutcome, VoiceCoach
from .audio.artifact import mime_type_for_suffix
from .audio.player import SpeechPlayer, save_speech
from .audio.recorder import DeviceError, PyAudioRecorder, get_available_devices
from .config import Settings
from .dispatch import AssessmentMode
from .feedback import AssessmentPayload, TranscriptPayload
from .ui.terminal import (
    COMMAND_MODE,
    COMMAND_PAUSE,
    COMMAND_QUIT,
    COMMAND_REFERENCE,
    TerminalUI,
)

logger = logging.getLogger(__name__)

# Raw PCM so replies can be played without a decoder
PLAYBACK_FORMAT = "pcm_16000"


def configure_logging(verbose: bool) -> None:
    """Route log records through rich; DEBUG with --verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True
    )
    # SDK transport chatter is only useful when debugging those libraries
    for noisy in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class CoachSession:
    """
    Interactive terminal session around a VoiceCoach.

    Handles the loop of prompting, recording, processing and presenting
    each turn until the user quits.
    """

    def __init__(
        self,
        coach: VoiceCoach,
        ui: Optional[TerminalUI] = None,
        copy_to_clipboard: bool = False,
        player: Optional[SpeechPlayer] = None
    ):
        self.coach = coach
        self.ui = ui or TerminalUI()
        self.copy_to_clipboard = copy_to_clipboard
        self.player = player or SpeechPlayer()

    async def run(self) -> None:
        """Run turns until the user quits; the microphone is always released."""
        self.ui.show_welcome(self.coach.mode, self.coach.reference_text)

        ready = await self.coach.controller.initialize()
        if not ready:
            self.ui.show_error(ready.message)
            await self.coach.close()
            return

        try:
            while True:
                command = await self.ui.prompt_command()
                if command == COMMAND_QUIT:
                    break
                if command == COMMAND_MODE:
                    self.coach.set_mode(self.coach.mode.toggled())
                    self.ui.show_mode(self.coach.mode, self.coach.reference_text)
                elif command == COMMAND_REFERENCE:
                    await self._ask_reference_text()
                else:
                    await self.run_turn()
        finally:
            await self.coach.close()

    async def _ask_reference_text(self) -> None:
        text = await self.ui.prompt_reference_text(self.coach.reference_text)
        self.coach.set_reference_text(text)
        self.ui.show_mode(self.coach.mode, self.coach.reference_text)

    async def run_turn(self) -> Optional[TurnOutcome]:
        """Record one utterance and present everything produced for it."""
        if self.coach.mode.requires_reference_text and not self.coach.reference_text:
            await self._ask_reference_text()
            if not self.coach.reference_text:
                self.ui.show_error("Reference text is required for pronunciation assessment")
                return None

        started = await self.coach.start_recording()
        if not started:
            self.ui.show_error(started.message)
            return None

        self.ui.show_recording_status()
        await self._wait_for_stop()
        finalized = await self.coach.stop_recording()

        if finalized is None or finalized.artifact.is_empty:
            self.ui.show_error("No audio was recorded.")
            return None

        if finalized.context.mode is AssessmentMode.PRONUNCIATION:
            self.ui.show_progress("Scoring pronunciation...")
        else:
            self.ui.show_progress("Transcribing...")

        outcome = await self.coach.process_recording(finalized)
        await self.present(outcome, finalized.context.reference_text)
        return outcome

    async def _wait_for_stop(self) -> None:
        """Handle pause and resume keys until the user stops the recording."""
        paused = False
        while await self.ui.prompt_recording_command(paused) == COMMAND_PAUSE:
            result = await (self.coach.resume_recording() if paused else self.coach.pause_recording())
            if not result:
                self.ui.show_error(result.message)
                continue
            paused = not paused
            self.ui.show_paused(paused)

    async def present(self, outcome: TurnOutcome, reference_text: Optional[str] = None) -> None:
        self.ui.stop_progress()

        if outcome.discarded:
            self.ui.show_discarded()
            return

        analysis = outcome.analysis
        if not analysis.ok:
            stage = "Assessment" if outcome.mode is AssessmentMode.PRONUNCIATION else "Transcription"
            self.ui.show_result_error(analysis, stage)
            return

        if isinstance(analysis.payload, TranscriptPayload):
            self.ui.display_transcript(analysis.payload)
            if self.copy_to_clipboard and analysis.payload.text:
                self._copy_to_clipboard(analysis.payload.text)
        elif isinstance(analysis.payload, AssessmentPayload):
            self.ui.display_assessment(analysis.payload, reference_text)

        if outcome.reply is not None:
            if outcome.reply.ok:
                self.ui.display_reply(outcome.reply.payload.text, outcome.reply.payload.model)
            else:
                self.ui.show_result_error(outcome.reply, "Reply")

        if outcome.speech is not None:
            if outcome.speech.ok:
                await self._play(outcome.speech.payload)
            else:
                self.ui.show_result_error(outcome.speech, "Voicing")

    async def _play(self, speech) -> None:
        if not await self.player.play(speech):
            self.ui.show_error(self.player.last_error)

    def _copy_to_clipboard(self, text: str) -> None:
        """
        Copy text to system clipboard.

        Args:
            text: Text to copy
        """
        try:
            pyperclip.copy(text)
            self.ui.show_success("Copied to clipboard")
        except pyperclip.PyperclipException as e:
            logger.warning(f"Clipboard unavailable: {e}")
            self.ui.console.print(f"[yellow]⚠️  Could not copy to clipboard: {e}[/yellow]")


def build_settings(
    mode: Optional[str] = None,
    language: Optional[str] = None,
    provider: Optional[str] = None,
    reply: Optional[bool] = None,
    speak: Optional[bool] = None,
    voice: Optional[str] = None
) -> Settings:
    """Environment settings with command-line overrides applied."""
    settings = Settings.from_env()
    if mode:
        settings.mode = mode
    if provider:
        settings.text_provider = provider
    if reply is not None:
        settings.auto_reply = reply
    if speak is not None:
        settings.auto_speak = speak
    if language:
        settings.transcription = settings.transcription.merged(language=language)
    if voice:
        settings.voicing = settings.voicing.merged(voice_id=voice)
    if settings.auto_speak:
        settings.voicing = settings.voicing.merged(output_format=PLAYBACK_FORMAT)
    return settings


def verbose_option(func):
    return click.option('--verbose', '-v', is_flag=True, help='Show debug logging')(func)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """
    Voice Coach - dictation and pronunciation practice.

    Records from the microphone, then either transcribes the speech or
    scores it against a sentence you choose. Transcripts can get a short
    AI reply, optionally spoken back.
    """
    load_dotenv()


@cli.command()
@click.option(
    '--mode',
    type=click.Choice([m.value for m in AssessmentMode]),
    default=None,
    help='Start in dictation or pronunciation mode'
)
@click.option('--reference', '-r', default=None, help='Sentence to practise in pronunciation mode')
@click.option('--language', default=None, help='Spoken language hint for transcription (e.g. en, de)')
@click.option(
    '--provider',
    type=click.Choice(['openai', 'claude']),
    default=None,
    help='Text generation backend for replies'
)
@click.option('--reply/--no-reply', default=None, help='Generate a reply to each transcript')
@click.option('--speak/--no-speak', default=None, help='Speak replies aloud')
@click.option('--voice', default=None, help='ElevenLabs voice name or id')
@click.option('--device', type=int, default=None, help='Input device index (see "voicecoach devices")')
@click.option('--copy/--no-copy', default=False, help='Copy each transcript to the clipboard')
@verbose_option
def run(
    mode: Optional[str],
    reference: Optional[str],
    language: Optional[str],
    provider: Optional[str],
    reply: Optional[bool],
    speak: Optional[bool],
    voice: Optional[str],
    device: Optional[int],
    copy: bool,
    verbose: bool
) -> None:
    """
    Start an interactive coaching session.

    Press Enter to start and stop recording, m to switch mode, r to set the
    reference sentence and q to quit.
    """
    configure_logging(verbose)

    try:
        settings = build_settings(mode, language, provider, reply, speak, voice)
        coach = VoiceCoach(settings=settings, device=PyAudioRecorder(input_device_index=device))
        coach.set_reference_text(reference)

        session = CoachSession(coach, copy_to_clipboard=copy)
        asyncio.run(session.run())

    except KeyboardInterrupt:
        click.echo("\nSession cancelled by user.")
        sys.exit(0)
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def _collect_status(coach: VoiceCoach) -> dict:
    await coach.controller.initialize()
    try:
        return coach.check_service_status()
    finally:
        await coach.close()


@cli.command()
@verbose_option
def status(verbose: bool) -> None:
    """Show which services are ready and which API keys are configured."""
    configure_logging(verbose)

    try:
        coach = VoiceCoach(settings=build_settings())
        TerminalUI().show_service_status(asyncio.run(_collect_status(coach)))
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def _say(coach: VoiceCoach, ui: TerminalUI, text: str, output: Optional[Path]) -> bool:
    try:
        ui.show_progress("Synthesizing speech...")
        result = await coach.synthesize_speech(text)
        ui.stop_progress()

        if not result.ok:
            ui.show_result_error(result, "Voicing")
            return False

        if output is not None:
            path = save_speech(result.payload, output)
            ui.show_success(f"Saved speech to {path}")
            return True

        player = SpeechPlayer()
        if not await player.play(result.payload):
            ui.show_error(player.last_error)
            return False
        return True
    finally:
        await coach.close()


@cli.command()
@click.argument('text')
@click.option('--voice', default=None, help='ElevenLabs voice name or id')
@click.option(
    '--output', '-o',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help='Write the audio to a file instead of playing it'
)
@verbose_option
def say(text: str, voice: Optional[str], output: Optional[Path], verbose: bool) -> None:
    """Speak TEXT with the configured ElevenLabs voice."""
    configure_logging(verbose)

    try:
        settings = build_settings(voice=voice)
        if output is None:
            settings.voicing = settings.voicing.merged(output_format=PLAYBACK_FORMAT)
        coach = VoiceCoach(settings=settings)
        if not asyncio.run(_say(coach, TerminalUI(), text, output)):
            sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def _assess(
    coach: VoiceCoach,
    ui: TerminalUI,
    audio: bytes,
    mime_type: str,
    reference: Optional[str],
    question: Optional[str]
) -> bool:
    try:
        if reference is not None:
            ui.show_progress("Scoring pronunciation...")
            result = await coach.assess_pronunciation(audio, reference, mime_type=mime_type)
        else:
            ui.show_progress("Scoring answer...")
            result = await coach.assess_spontaneous(audio, question, mime_type=mime_type)
        ui.stop_progress()

        if not result.ok:
            ui.show_result_error(result, "Assessment")
            return False

        if reference is not None:
            ui.display_assessment(result.payload, reference)
        else:
            ui.display_spontaneous(result.payload, question)
        return True
    finally:
        await coach.close()


@cli.command()
@click.argument('audio_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--reference', '-r', default=None, help='Sentence read aloud in the recording')
@click.option('--question', '-q', default=None, help='Question answered in the recording')
@click.option('--dialect', default=None, help='SpeechAce dialect, e.g. en-us or en-gb')
@verbose_option
def assess(
    audio_file: Path,
    reference: Optional[str],
    question: Optional[str],
    dialect: Optional[str],
    verbose: bool
) -> None:
    """
    Score a recorded AUDIO_FILE.

    With --reference the file is scored as read speech; with --question it
    is scored as a spontaneous answer.
    """
    if (reference is None) == (question is None):
        raise click.UsageError("Pass exactly one of --reference or --question")

    mime_type = mime_type_for_suffix(audio_file.suffix)
    if mime_type is None:
        raise click.UsageError(f"Unsupported audio file type: {audio_file.suffix or '(none)'}")

    configure_logging(verbose)

    try:
        settings = build_settings()
        if dialect:
            settings.assessment = settings.assessment.merged(dialect=dialect)
        coach = VoiceCoach(settings=settings)
        audio = audio_file.read_bytes()
        if not asyncio.run(_assess(coach, TerminalUI(), audio, mime_type, reference, question)):
            sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def _voices(coach: VoiceCoach, ui: TerminalUI, models: bool) -> bool:
    try:
        listing = await (coach.list_models() if models else coach.list_voices())
        if not listing.ok:
            ui.show_result_error(listing, "Listing")
            return False

        if models:
            ui.show_models(listing.payload)
        else:
            ui.show_voices(listing.payload)

        account = await coach.get_voicing_account()
        if account.ok:
            ui.show_voicing_account(account.payload)
        else:
            logger.info(f"Account lookup failed: {account.user_message}")
        return True
    finally:
        await coach.close()


@cli.command()
@click.option('--models', is_flag=True, help='List synthesis models instead of voices')
@verbose_option
def voices(models: bool, verbose: bool) -> None:
    """List ElevenLabs voices (or models) and the remaining character quota."""
    configure_logging(verbose)

    try:
        coach = VoiceCoach(settings=build_settings())
        if not asyncio.run(_voices(coach, TerminalUI(), models)):
            sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@verbose_option
def devices(verbose: bool) -> None:
    """List audio input devices."""
    configure_logging(verbose)

    try:
        TerminalUI().show_devices(get_available_devices())
    except DeviceError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()

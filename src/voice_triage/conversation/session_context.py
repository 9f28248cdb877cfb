"""
Per-session flags.

Kept on an explicit object owned by the orchestrator so concurrent sessions
never share output modality or triage progress.
"""

from uuid import UUID, uuid4

from voice_triage.conversation.schemas import OutputModality


class SessionContext:
    """
    Mutable flags of one conversation session.

    Output modality is fixed by the first interaction; triage completion is
    monotonic; the system prompt is plain configuration.
    """

    def __init__(self, system_prompt: str = "You are a helpful AI assistant.") -> None:
        """
        Initialize session context.

        Args:
            system_prompt: Instruction prepended to every chat request.
        """
        self._session_id: UUID = uuid4()
        self._output_modality: OutputModality = OutputModality.UNDECIDED
        self._triage_complete: bool = False
        self._system_prompt: str = system_prompt

    @property
    def session_id(self) -> UUID:
        """Get the unique session identifier."""
        return self._session_id

    @property
    def output_modality(self) -> OutputModality:
        """Get the output modality (undecided until the first interaction)."""
        return self._output_modality

    @property
    def uses_voice_output(self) -> bool:
        return self._output_modality == OutputModality.VOICE

    @property
    def triage_complete(self) -> bool:
        """Whether the assistant has signalled the end of triage."""
        return self._triage_complete

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @system_prompt.setter
    def system_prompt(self, prompt: str) -> None:
        self._system_prompt = prompt

    def fix_modality(self, modality: OutputModality) -> OutputModality:
        """
        Decide the output modality if it is still undecided.

        Args:
            modality: Modality implied by the first interaction.

        Returns:
            The effective modality (unchanged if it was already decided).
        """
        if modality == OutputModality.UNDECIDED:
            raise ValueError("Cannot fix output modality to 'undecided'")
        if self._output_modality == OutputModality.UNDECIDED:
            self._output_modality = modality
        return self._output_modality

    def mark_triage_complete(self) -> bool:
        """
        Mark triage as complete.

        Returns:
            True if this call flipped the flag.
        """
        if self._triage_complete:
            return False
        self._triage_complete = True
        return True

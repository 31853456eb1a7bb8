"""Controller-side session state: transcript, waveforms, phase and commands."""

from homecommand.services.speech import SpeechServices, SpeechToText, TextToSpeech

__all__ = ["SpeechServices", "SpeechToText", "TextToSpeech"]

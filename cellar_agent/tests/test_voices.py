from cellar_agent.speech.voices import VoiceCandidate, parse_espeak_voices, score_voice, select_voice


ESPEAK_OUTPUT = """Pty Language       Age/Gender VoiceName          File                 Other Languages
 5  af              --/M      Afrikaans          gmw/af
 5  en-gb           --/M      English_(Great_Britain) gmw/en
 5  fr-be           --/F      French_(Belgium)   roa/fr-BE
 5  fr-fr           --/M      French_(France)    roa/fr
"""


def test_score_voice():
    male_fr = VoiceCandidate(name="French (France)", lang="fr-fr", tags=("male",))
    female_fr = VoiceCandidate(name="French (France)", lang="fr-fr", tags=("female",))
    english = VoiceCandidate(name="Daniel", lang="en-gb")
    assert score_voice(male_fr) == 90
    assert score_voice(male_fr) > score_voice(female_fr)
    assert score_voice(english) == 15
    assert score_voice(VoiceCandidate(name="Amélie", lang="fr-CA")) == 50


def test_select_voice_prefers_french_male():
    voices = parse_espeak_voices(ESPEAK_OUTPUT)
    best = select_voice(voices, language="fr", locale="fr-fr")
    assert best.lang == "fr-fr"
    assert best.name == "French (France)"


def test_select_voice_ties_and_empty():
    first = VoiceCandidate(name="Voix A", lang="fr")
    second = VoiceCandidate(name="Voix B", lang="fr")
    assert select_voice([first, second]) is first
    assert select_voice([]) is None


def test_parse_espeak_voices():
    voices = parse_espeak_voices(ESPEAK_OUTPUT)
    assert [v.lang for v in voices] == ["af", "en-gb", "fr-be", "fr-fr"]
    assert voices[1].name == "English (Great Britain)"
    assert voices[2].tags == ("female",)
    assert voices[3].tags == ("male",)

"""Consent wording shown on the registration form.

The text is snapshotted into every ConsentRecord, so edits here must bump
``CONSENT_VERSION``.
"""

CONSENT_VERSION = "2024-01"

CONSENT_POLICY_TEXT = """By registering with Otters Kenya Swim Club:

1. I confirm that the information provided above is accurate and complete to the best of my knowledge.

2. I agree to ensure that I / my child abides by the club's code of conduct, safety rules, and any instructions issued by coaches or staff.

3. I consent to the use of photographs or videos of myself / my child taken during training or competitions for club-related promotional materials, social media, or reports. If I do not wish to give media consent, I will notify the club in writing.

4. I acknowledge that registration is only complete upon payment of the non-refundable annual registration fee of KES 3,500."""

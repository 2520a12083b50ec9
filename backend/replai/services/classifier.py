from textblob import TextBlob
from typing import Dict, Iterable, List, Optional

POSITIVE_WORDS = [
    'thanks', 'thank you', 'grateful', 'appreciate', 'happy', 'pleased',
    'great', 'good', 'excellent', 'wonderful', 'amazing', 'awesome',
    'delighted', 'excited', 'love', 'fantastic', 'perfect', 'thrilled',
    'satisfied', 'impressed', 'helpful', 'congratulations', 'kudos',
]
NEGATIVE_WORDS = [
    'issue', 'problem', 'error', 'mistake', 'wrong', 'bad', 'unhappy',
    'disappointed', 'frustrating', 'frustration', 'complaint', 'fail',
    'failed', 'terrible', 'awful', 'horrible', 'annoying', 'annoyed',
    'concerned', 'concern', 'broken', 'bug', 'difficult', 'trouble',
    'unfortunately', 'regret', 'sorry', 'apology', 'apologize',
]
URGENT_INDICATORS = [
    'urgent', 'asap', 'emergency', 'immediately', 'critical', 'important',
    'deadline', 'quickly', 'hurry', 'rush', 'now', 'priority', 'attention',
]

SOCIAL_DOMAINS = [
    'linkedin.com', 'twitter.com', 'facebook.com', 'instagram.com',
    'tiktok.com', 'reddit.com', 'snapchat.com', 'pinterest.com',
    'quora.com', 'medium.com',
]
# substring patterns matched against the whole sender address, in this order
SENDER_PATTERNS = {
    'updates': ['noreply', 'no-reply', 'donotreply', 'automated', 'system',
                'notification', 'alert', 'update', 'info', 'support', 'service'],
    'forums': ['group', 'forum', 'list', 'discuss', 'community', 'members',
               'subscribe', 'listserv'],
    'promotions': ['marketing', 'newsletter', 'offer', 'promo', 'sale', 'discount',
                   'deal', 'coupon', 'shop', 'store', 'special'],
}
AUTOMATED_MARKERS = ['noreply', 'no-reply', 'donotreply']

CATEGORY_KEYWORDS = {
    'social': ['connection', 'connect', 'friend', 'follow', 'network', 'invitation',
               'social', 'profile', 'post', 'shared', 'like', 'comment'],
    'promotions': ['offer', 'discount', 'sale', 'promotion', 'deal', 'coupon', 'limited',
                   'exclusive', 'subscribe', 'newsletter', 'marketing', 'price', 'off',
                   'free', 'save', 'buy', 'purchase'],
    'updates': ['update', 'notification', 'alert', 'receipt', 'invoice', 'payment',
                'order', 'shipped', 'delivery', 'account', 'password', 'security',
                'verify', 'confirmation', 'summary', 'statement'],
    'forums': ['thread', 'topic', 'discussion', 'forum', 'group', 'reply', 'post',
               'mailing list', 'subscribe', 'unsubscribe', 'digest'],
}
IMPORTANT_KEYWORDS = [
    'urgent', 'important', 'critical', 'attention', 'required',
    'action needed', 'deadline', 'asap', 'emergency',
]
TRANSACTIONAL_SUBJECT_WORDS = ['receipt', 'invoice', 'order', 'payment', 'transaction']

BULK_INDICATORS = [
    'view in browser', 'email preference', 'privacy policy', 'terms of service',
    'to unsubscribe', 'received this email because', 'newsletter',
    'update your preferences', 'you are receiving this email because',
]

CATEGORIES = ('primary', 'social', 'promotions', 'updates', 'forums', 'important')
KEYWORD_THRESHOLD = 2


def _count(text: str, words: Iterable[str]) -> int:
    return sum(1 for w in words if w in text)


def _sender_email(from_: Optional[str]) -> str:
    from .email_parser import parse_address
    return parse_address(from_ or '')['email'].lower()


def categorize(subject: Optional[str], body: Optional[str], from_: Optional[str]) -> str:
    subject = (subject or '').lower()
    sender = _sender_email(from_)
    local, _, domain = sender.partition('@')

    if domain:
        if any(domain == d or domain.endswith('.' + d) for d in SOCIAL_DOMAINS):
            return 'social'
        for category, patterns in SENDER_PATTERNS.items():
            if any(p in sender for p in patterns):
                return category
    if any(m in local for m in AUTOMATED_MARKERS):
        return 'updates'

    text = f"{subject} {(body or '')[:1000].lower()}"
    if any(k in text for k in IMPORTANT_KEYWORDS):
        return 'important'
    for category, keywords in CATEGORY_KEYWORDS.items():
        if _count(text, keywords) >= KEYWORD_THRESHOLD:
            return category
    if any(w in subject for w in TRANSACTIONAL_SUBJECT_WORDS):
        return 'updates'
    return 'primary'


def analyze_sentiment(text: Optional[str]) -> str:
    if not text:
        return 'neutral'
    lowered = text.lower()
    pos = _count(lowered, POSITIVE_WORDS)
    neg = _count(lowered, NEGATIVE_WORDS)
    if pos > neg:
        return 'positive'
    if neg > pos:
        return 'negative'
    return 'neutral'


def deep_sentiment(text: Optional[str]) -> Dict:
    """Confidence-scored sentiment breakdown.

    TextBlob polarity is blended with the lexical count. When both agree the
    confidence is high; when polarity is weak the lexical label stands with a
    lower confidence.
    """
    lexical = analyze_sentiment(text)
    polarity = TextBlob(text or '').sentiment.polarity
    if polarity > 0.1:
        blob = 'positive'
    elif polarity < -0.1:
        blob = 'negative'
    else:
        blob = 'neutral'

    if blob == lexical:
        label, confidence = lexical, round(min(0.95, 0.7 + abs(polarity) * 0.25), 2)
    elif lexical == 'neutral':
        label, confidence = blob, round(0.5 + abs(polarity) * 0.3, 2)
    else:
        label, confidence = lexical, 0.55

    details = {'positive': 0.2, 'negative': 0.2, 'neutral': 0.1}
    details[label] = confidence
    return {
        'sentiment': label,
        'confidence': confidence,
        'details': details,
        'polarity': round(polarity, 3),
    }


def is_urgent(subject: Optional[str], body: Optional[str]) -> bool:
    text = f"{subject or ''} {body or ''}".lower()
    return any(w in text for w in URGENT_INDICATORS)


def is_bulk(from_: Optional[str], headers: Optional[List[Dict[str, str]]], body: Optional[str]) -> bool:
    from .email_parser import header_value
    sender = _sender_email(from_)
    if any(m in sender for m in AUTOMATED_MARKERS):
        return True
    if header_value(headers, 'List-Unsubscribe'):
        return True
    lowered = (body or '').lower()
    return 'unsubscribe' in lowered or any(i in lowered for i in BULK_INDICATORS)


def priority_score(subject: Optional[str], body: Optional[str], from_email: Optional[str] = None) -> int:
    """1 (highest) .. 5 (lowest); 3 is the neutral baseline."""
    score = 3.0
    sentiment = analyze_sentiment(body)
    if sentiment == 'negative':
        score -= 1
    elif sentiment == 'positive':
        score += 0.5
    if is_urgent(subject, body):
        score -= 1
    if from_email and any(m in from_email.lower() for m in AUTOMATED_MARKERS):
        score += 1
    # round half up so a positive nudge from 3 lands on 4
    return max(1, min(5, int(score + 0.5)))


def classify(subject: Optional[str], body: Optional[str], from_: Optional[str],
             headers: Optional[List[Dict[str, str]]] = None) -> Dict:
    """Every lexical signal for one message in a single dict."""
    return {
        'category': categorize(subject, body, from_),
        'sentiment': analyze_sentiment(body),
        'is_urgent': is_urgent(subject, body),
        'is_bulk': is_bulk(from_, headers, body),
        'priority': priority_score(subject, body, _sender_email(from_)),
    }

"""
Keyword tables used by the canonicalizer.

Everything here is data: ordered (label, pattern) tables compiled once at
import. Patterns are matched case-insensitively unless compiled otherwise.
"""

from __future__ import annotations

import re

from .models import EligibilityYear, Major, Role

_I = re.IGNORECASE


def _rx(*alternatives: str, flags: int = _I) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{a})" for a in alternatives), flags)


# -----------------------------------------------------------------------------
# Roles (ORDER MATTERS: first match wins, more specific families first)
# -----------------------------------------------------------------------------
ROLE_PATTERNS: tuple[tuple[Role, re.Pattern[str]], ...] = (
    (
        Role.QUANTITATIVE_RESEARCH,
        _rx(r"\bquant(?:itative)?\b", r"\balgorithmic trad", r"\btrad(?:ing|er) intern", r"\bquantitative"),
    ),
    (
        Role.DATA_SCIENCE,
        _rx(
            r"\bdata scien",
            r"\bmachine learning\b",
            r"\bml\b",
            r"\bdeep learning\b",
            r"\bartificial intelligence\b",
            r"\bai (?:engineer|research)",
            r"\bdata analy",
            r"\bdata engineer",
            r"\banalytics\b",
            r"\bcomputer vision\b",
            r"\bnlp\b",
        ),
    ),
    (
        Role.PRODUCT_MANAGEMENT,
        _rx(r"\bproduct manag", r"\bapm\b", r"\bproduct owner\b", r"\bpm intern"),
    ),
    (
        Role.DESIGN,
        _rx(
            r"\bux\b",
            r"\bui\b",
            r"\buser experience\b",
            r"\bproduct design",
            r"\bgraphic design",
            r"\binteraction design",
            r"\bvisual design",
        ),
    ),
    (
        Role.HARDWARE_ENGINEERING,
        _rx(
            r"\bhardware\b",
            r"\belectrical engineer",
            r"\bembedded\b",
            r"\bfirmware\b",
            r"\basic\b",
            r"\bfpga\b",
            r"\bsilicon\b",
            r"\bvlsi\b",
        ),
    ),
    (
        Role.SOFTWARE_ENGINEERING,
        _rx(
            r"\bsoftware\b",
            r"\bswe\b",
            r"\bsde\b",
            r"\bdeveloper\b",
            r"\bprogrammer\b",
            r"\bback[- ]?end\b",
            r"\bfront[- ]?end\b",
            r"\bfull[- ]?stack\b",
            r"\bmobile engineer",
            r"\b(?:ios|android) (?:engineer|developer)",
            r"\bdevops\b",
            r"\bsite reliability\b",
            r"\bsre\b",
            r"\b(?:infrastructure|platform|cloud|security|systems) engineer",
            r"\bengineering intern",
        ),
    ),
    (
        Role.BUSINESS_ANALYST,
        _rx(r"\bbusiness analy", r"\bbusiness intelligence\b", r"\bstrategy analyst\b", r"\bbi analyst\b"),
    ),
    (
        Role.RESEARCH,
        _rx(r"\bresearch (?:intern|scientist|assistant|engineer)", r"\br&d\b", r"\bresearcher\b"),
    ),
    (
        Role.FINANCE,
        _rx(
            r"\bfinanc(?:e|ial)\b",
            r"\baccounting\b",
            r"\binvestment bank",
            r"\btreasury\b",
            r"\baudit\b",
            r"\bprivate equity\b",
        ),
    ),
    (Role.CONSULTING, _rx(r"\bconsult")),
    (
        Role.MARKETING,
        _rx(r"\bmarketing\b", r"\bbrand\b", r"\bcommunications\b", r"\bsocial media\b"),
    ),
    (Role.SALES, _rx(r"\bsales\b", r"\bbusiness development\b", r"\baccount executive\b")),
    (
        Role.OPERATIONS,
        _rx(
            r"\boperations\b",
            r"\bsupply chain\b",
            r"\blogistics\b",
            r"\bprogram manag",
            r"\bproject manag",
        ),
    ),
)


# -----------------------------------------------------------------------------
# Skills: canonical lowercase name -> pattern
# -----------------------------------------------------------------------------
SKILL_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("python", _rx(r"\bpython\b")),
    ("java", _rx(r"\bjava\b(?!\s*script)")),
    ("javascript", _rx(r"\bjavascript\b", r"\bjs\b")),
    ("typescript", _rx(r"\btypescript\b")),
    ("c++", _rx(r"(?<![\w+])c\+\+(?![\w+])", r"\bcpp\b")),
    ("c#", _rx(r"(?<![\w#])c#(?![\w#])", r"\bcsharp\b")),
    ("c", re.compile(r"(?<![\w+#/-])C(?![\w+#-])(?=\s*(?:,|/|\band\b|\bor\b|\)))")),
    ("go", _rx(r"\b(?i:golang)\b", r"\bGo\b(?=\s*(?:,|/|\band\b|\bor\b|\)))", flags=0)),
    ("rust", _rx(r"\brust\b")),
    ("ruby", _rx(r"\bruby\b")),
    ("kotlin", _rx(r"\bkotlin\b")),
    ("swift", _rx(r"\bswift\b")),
    ("scala", _rx(r"\bscala\b")),
    ("r", re.compile(r"(?<![\w&'-])R(?![\w&'-])(?=\s*(?:,|/|\band\b|\bor\b|\)|programming))")),
    ("sql", _rx(r"\bsql\b", r"\bpostgres(?:ql)?\b", r"\bmysql\b")),
    ("matlab", _rx(r"\bmatlab\b")),
    ("react", _rx(r"\breact(?:\.js|js)?\b")),
    ("angular", _rx(r"\bangular\b")),
    ("vue", _rx(r"\bvue(?:\.js)?\b")),
    ("node.js", _rx(r"\bnode(?:\.js|js)?\b")),
    ("django", _rx(r"\bdjango\b")),
    ("flask", _rx(r"\bflask\b")),
    ("spring", _rx(r"\bspring boot\b", r"\bspring framework\b")),
    ("aws", _rx(r"\baws\b", r"\bamazon web services\b")),
    ("gcp", _rx(r"\bgcp\b", r"\bgoogle cloud\b")),
    ("azure", _rx(r"\bazure\b")),
    ("docker", _rx(r"\bdocker\b")),
    ("kubernetes", _rx(r"\bkubernetes\b", r"\bk8s\b")),
    ("terraform", _rx(r"\bterraform\b")),
    ("linux", _rx(r"\blinux\b", r"\bunix\b")),
    ("git", _rx(r"\bgit\b", r"\bgithub\b")),
    ("pytorch", _rx(r"\bpytorch\b")),
    ("tensorflow", _rx(r"\btensorflow\b")),
    ("pandas", _rx(r"\bpandas\b")),
    ("numpy", _rx(r"\bnumpy\b")),
    ("spark", _rx(r"\bspark\b", r"\bpyspark\b")),
    ("hadoop", _rx(r"\bhadoop\b")),
    ("tableau", _rx(r"\btableau\b")),
    ("excel", _rx(r"\bexcel\b")),
    ("figma", _rx(r"\bfigma\b")),
    ("machine learning", _rx(r"\bmachine learning\b")),
    ("deep learning", _rx(r"\bdeep learning\b")),
    ("nlp", _rx(r"\bnlp\b", r"\bnatural language processing\b")),
    ("computer vision", _rx(r"\bcomputer vision\b")),
    ("graphql", _rx(r"\bgraphql\b")),
    ("rest", _rx(r"\brest(?:ful)? apis?\b")),
    ("verilog", _rx(r"\b(?:system)?verilog\b")),
    ("vhdl", _rx(r"\bvhdl\b")),
)


# -----------------------------------------------------------------------------
# Majors
# -----------------------------------------------------------------------------
MAJOR_PATTERNS: tuple[tuple[Major, re.Pattern[str]], ...] = (
    (Major.COMPUTER_SCIENCE, _rx(r"\bcomputer science\b", r"\bcs\b", r"\bsoftware engineering (?:major|degree)")),
    (Major.COMPUTER_ENGINEERING, _rx(r"\bcomputer engineering\b", r"\bce\b(?= (?:major|degree|student))")),
    (Major.ELECTRICAL_ENGINEERING, _rx(r"\belectrical engineering\b", r"\bece\b", r"\bee\b(?= (?:major|degree))")),
    (Major.MECHANICAL_ENGINEERING, _rx(r"\bmechanical engineering\b", r"\bmeche?\b")),
    (Major.DATA_SCIENCE, _rx(r"\bdata science\b")),
    (Major.MATHEMATICS, _rx(r"\bmath(?:ematics)?\b", r"\bapplied math")),
    (Major.STATISTICS, _rx(r"\bstatistics\b", r"\bbiostatistics\b")),
    (Major.PHYSICS, _rx(r"\bphysics\b")),
    (Major.ECONOMICS, _rx(r"\beconomics\b", r"\becon\b")),
    (Major.FINANCE, _rx(r"\bfinance (?:major|degree)", r"\baccounting\b", r"\bmajors? in finance\b")),
    (Major.BUSINESS, _rx(r"\bbusiness administration\b", r"\bbusiness (?:major|degree)", r"\bmba\b")),
    (
        Major.DESIGN,
        _rx(r"\b(?:graphic|interaction|industrial) design\b", r"\bhci\b", r"\bhuman[- ]computer interaction\b"),
    ),
    (Major.INFORMATION_SYSTEMS, _rx(r"\binformation (?:systems|technology)\b", r"\bmis\b")),
)


# -----------------------------------------------------------------------------
# Eligibility / class standing
# -----------------------------------------------------------------------------
ELIGIBILITY_PATTERNS: tuple[tuple[EligibilityYear, re.Pattern[str]], ...] = (
    (EligibilityYear.FRESHMAN, _rx(r"\bfreshm[ae]n\b", r"\bfirst[- ]year\b", r"\b1st[- ]year\b")),
    (EligibilityYear.SOPHOMORE, _rx(r"\bsophomores?\b", r"\bsecond[- ]year\b", r"\b2nd[- ]year\b")),
    (EligibilityYear.JUNIOR, _rx(r"\bjuniors\b", r"\bthird[- ]year\b", r"\b3rd[- ]year\b", r"\bpenultimate year\b")),
    (
        EligibilityYear.SENIOR,
        _rx(r"\bseniors\b", r"\bfinal[- ]year\b", r"\bfourth[- ]year\b", r"\b4th[- ]year\b", r"\brising seniors?\b"),
    ),
    (
        EligibilityYear.GRADUATE,
        _rx(
            r"\bgraduate (?:students?|programs?|degree)\b",
            r"\bmaster'?s\b",
            r"\bph\.?d\b",
            r"\bdoctoral\b",
            r"\bmba\b",
        ),
    ),
)

GRADUATION_YEAR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bclass of\s+'?(20\d{2})\b", _I),
    re.compile(r"\bgraduat(?:e|ing|ion)(?:\s+date)?\s*(?:in|by|between|:)?\s*(?:[a-z]+\.?\s+)?(20\d{2})\b", _I),
)


# -----------------------------------------------------------------------------
# Location / remote
# -----------------------------------------------------------------------------
REMOTE_PATTERN = _rx(r"\bremote\b", r"\bwork from home\b", r"\bwfh\b", r"\banywhere\b", r"\bdistributed team\b")
HYBRID_PATTERN = _rx(r"\bhybrid\b")

LOCATION_ALIASES: dict[str, str] = {
    "sf": "San Francisco, CA",
    "san francisco": "San Francisco, CA",
    "san francisco ca": "San Francisco, CA",
    "bay area": "San Francisco, CA",
    "sf bay area": "San Francisco, CA",
    "nyc": "New York, NY",
    "new york": "New York, NY",
    "new york city": "New York, NY",
    "new york ny": "New York, NY",
    "ny": "New York, NY",
    "la": "Los Angeles, CA",
    "los angeles": "Los Angeles, CA",
    "seattle": "Seattle, WA",
    "seattle wa": "Seattle, WA",
    "boston": "Boston, MA",
    "boston ma": "Boston, MA",
    "austin": "Austin, TX",
    "austin tx": "Austin, TX",
    "chicago": "Chicago, IL",
    "chicago il": "Chicago, IL",
    "dc": "Washington, DC",
    "washington dc": "Washington, DC",
    "mountain view": "Mountain View, CA",
    "palo alto": "Palo Alto, CA",
    "menlo park": "Menlo Park, CA",
    "san jose": "San Jose, CA",
    "sunnyvale": "Sunnyvale, CA",
    "redmond": "Redmond, WA",
    "denver": "Denver, CO",
    "atlanta": "Atlanta, GA",
}


# -----------------------------------------------------------------------------
# Programs, pay, work type
# -----------------------------------------------------------------------------
PROGRAM_PATTERN = _rx(
    r"\bstep (?:intern|program)",
    r"\bgoogle step\b",
    r"\bexplore (?:intern|program)",
    r"\bcode2040\b",
    r"\bcolorstack\b",
    r"\bgrace hopper\b",
    r"\btapia\b",
    r"\bnsbe\b",
    r"\bshpe\b",
    r"\bsase\b",
    r"\baises\b",
    r"\bhbcus?\b",
    r"\bdiversity\b",
    r"\bunderrepresented\b",
    r"\bwomen in (?:tech|technology|engineering|stem|computing)\b",
    r"\bfirst[- ]generation\b",
    r"\bveterans?\b",
    r"\brotational program\b",
    r"\bearly insight\b",
    r"\bdiscovery program\b",
)

UNPAID_PATTERN = _rx(r"\bunpaid\b", r"\bvolunteer\b", r"\bno compensation\b", r"\bacademic credit\b", r"\bfor credit\b")
STIPEND_PATTERN = _rx(r"\bstipend\b")
PAID_PATTERN = _rx(r"\bpaid\b", r"\bcompensation\b", r"\bsalary\b", r"\bhourly\b", r"\bper hour\b", r"\bcompetitive pay\b")

CURRENCY_SYMBOLS: dict[str, str] = {"$": "USD", "€": "EUR", "£": "GBP"}

# "(?![\d,])" stops backtracking into "$1" out of "$10 million"
_AMOUNT = r"(\d{1,3}(?:,\d{3})+|\d+)(?![\d,])(?:\.(\d+))?\s*([kK])?(?!\s*(?:[mb]n?\b|mm\b|million|billion))"
_UNIT = r"(?:\s*(?:/|per|an|a)\s*(hour|hr|h|month|mo|week|wk|year|yr|annum))?"
PAY_RANGE_PATTERN = re.compile(
    r"(USD|CAD|EUR|GBP|[$€£])\s?" + _AMOUNT + r"\s*(?:-|–|—|to)\s*(?:USD|CAD|EUR|GBP|[$€£])?\s?" + _AMOUNT + _UNIT,
    _I,
)
PAY_SINGLE_PATTERN = re.compile(r"(USD|CAD|EUR|GBP|[$€£])\s?" + _AMOUNT + _UNIT, _I)

PAY_UNIT_HINTS = (
    (re.compile(r"\b(?:per|an|/)\s*(?:hour|hr)\b|\bhourly\b", _I), "hourly"),
    (re.compile(r"\b(?:per|a|/)\s*(?:month|mo)\b|\bmonthly\b", _I), "monthly"),
    (re.compile(r"\b(?:per|a|/)\s*(?:year|yr|annum)\b|\bannual(?:ly)?\b", _I), "yearly"),
)


# -----------------------------------------------------------------------------
# Cycle, deadline, title cleanup
# -----------------------------------------------------------------------------
CYCLE_PATTERN = re.compile(r"\b(summer|fall|autumn|spring|winter)\s*'?(\d{4}|\d{2})\b", _I)

DEADLINE_PATTERN = re.compile(
    r"\b(?:application\s+)?(?:deadline|apply\s+by|applications?\s+(?:due|close[sd]?)(?:\s+on)?)\s*[:\-]?\s*"
    r"([A-Za-z]{3,9}\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}|\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2})",
    _I,
)
DEADLINE_FORMATS = ("%B %d %Y", "%b %d %Y", "%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d")

# "Software Engineer Intern - Summer 2026 (BS/MS)" -> strip these for exact_role
EXACT_ROLE_NOISE = (
    re.compile(r"\s*[\(\[][^\)\]]*\b(?:bs|ms|ba|phd|mba|bachelor|master|undergrad)[^\)\]]*[\)\]]", _I),
    re.compile(r"\s*[-–—|,:]?\s*\b(?:summer|fall|autumn|spring|winter)\s*'?(?:\d{4}|\d{2})\b", _I),
    re.compile(r"\s*[-–—|,:]?\s*\bclass of\s+'?\d{2,4}\b", _I),
    re.compile(r"\s*[-–—|,:]\s*$"),
)
